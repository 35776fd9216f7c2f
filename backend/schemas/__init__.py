"""Shared Pydantic schemas for the decision engine backend.

This module centralizes request models used across multiple routers
to prevent drift between duplicate definitions.
"""

from .decisions import (
    ClaimStatusWebhook,
    ClaimUpsertRequest,
    EvaluateRequest,
    OutcomeRequest,
    RuleDocument,
    RulePatch,
)

__all__ = [
    "ClaimStatusWebhook",
    "ClaimUpsertRequest",
    "EvaluateRequest",
    "OutcomeRequest",
    "RuleDocument",
    "RulePatch",
]
