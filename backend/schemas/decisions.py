"""Pydantic schemas for the decision engine endpoints.

These models only shape request bodies. Rule triggers and actions stay
as plain dicts here; ``rules.dsl`` validates them and reports the path
of the offending node.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from outcomes.models import OutcomeResult

MAX_RELATED_ITEMS = 500


def _required_id(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class RuleDocument(BaseModel):
    """Request model for creating or validating a rule."""

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    category: str
    priority: int = 5
    trigger: dict[str, Any]
    action: dict[str, Any]
    enabled: bool = True


class RulePatch(BaseModel):
    """Partial rule update. Only the fields that are set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    category: str | None = None
    priority: int | None = None
    trigger: dict[str, Any] | None = None
    action: dict[str, Any] | None = None
    enabled: bool | None = None


class EvaluateRequest(BaseModel):
    claim_id: str

    @field_validator("claim_id")
    @classmethod
    def validate_claim_id(cls, v: str) -> str:
        return _required_id(v)


class ClaimUpsertRequest(BaseModel):
    """Claim record pushed from the CRM, with optional related entities.

    Entities left as None keep whatever is already stored.
    """

    claim: dict[str, Any]
    supplements: list[dict[str, Any]] | None = None
    photos: list[dict[str, Any]] | None = None
    inspections: list[dict[str, Any]] | None = None
    evaluate: bool = False

    @field_validator("supplements", "photos", "inspections")
    @classmethod
    def validate_related_length(
        cls, v: list[dict[str, Any]] | None
    ) -> list[dict[str, Any]] | None:
        """Validate that related entity lists don't exceed maximum length."""
        if v is not None and len(v) > MAX_RELATED_ITEMS:
            raise ValueError(f"Too many items. Maximum {MAX_RELATED_ITEMS} per entity.")
        return v

    def related(self) -> dict[str, list[dict[str, Any]]]:
        return {
            entity: items
            for entity, items in (
                ("supplements", self.supplements),
                ("photos", self.photos),
                ("inspections", self.inspections),
            )
            if items is not None
        }


class OutcomeRequest(BaseModel):
    """An observed outcome for a claim.

    Attribution is by recommendation, by rule, or by compensating an
    earlier outcome.
    """

    claim_id: str
    result: OutcomeResult
    recommendation_id: str | None = None
    rule_id: str | None = None
    agent_id: str | None = None
    agent_name: str | None = None
    observed_at: datetime | None = None
    compensates_id: str | None = None

    @field_validator("claim_id")
    @classmethod
    def validate_claim_id(cls, v: str) -> str:
        return _required_id(v)


class ClaimStatusWebhook(BaseModel):
    """Claim status change delivered by the CRM."""

    claim_id: str
    status: str
    agent_id: str | None = None
    agent_name: str | None = None
    observed_at: datetime | None = None

    @field_validator("claim_id", "status")
    @classmethod
    def validate_required(cls, v: str) -> str:
        return _required_id(v)
