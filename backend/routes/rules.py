"""Rule management and claim evaluation routes.

Rules are authored in the admin panel or installed from YAML rule packs.
Every document is validated on save; invalid rules are rejected with the
path of the offending node so the editor can highlight it.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from config import EVALUATE_RATE_LIMIT
from rules.dsl import (
    ACTION_PRIORITIES,
    KNOWN_CATEGORIES,
    RULE_PRIORITY_MAX,
    RULE_PRIORITY_MIN,
    rule_to_dict,
    validate_rule_document,
)
from rules.errors import DecisionEngineError, RuleValidationError
from rules.models import ActionType, Operator
from rules.ruleset import install_pack, list_packs
from schemas import EvaluateRequest, RuleDocument, RulePatch
from services import get_services

from .audit import AuditAction, audit
from .dependencies import get_org_id, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rules", tags=["rules"])


@router.get("")
async def list_rules(
    org_id: str = Depends(get_org_id),
    include_archived: bool = Query(default=False),
    category: str | None = Query(default=None, description="Filter by category"),
):
    """List the organization's rules in firing order."""
    rules = get_services().rule_store.list_rules(org_id, include_archived=include_archived)
    if category:
        rules = [rule for rule in rules if rule.category == category]
    return {"rules": [rule_to_dict(rule) for rule in rules], "total": len(rules)}


@router.post("", status_code=201)
async def create_rule(body: RuleDocument, org_id: str = Depends(get_org_id)):
    rule = get_services().rule_store.create_rule(org_id, body.model_dump())
    audit(org_id, AuditAction.RULE_CREATE, "rule", rule.id, {"name": rule.name})
    return rule_to_dict(rule)


@router.post("/validate")
async def validate_rule(body: dict[str, Any]):
    """Validate a rule document without saving it.

    Returns ``valid`` plus the first error and its path.
    """
    try:
        validate_rule_document(body)
    except RuleValidationError as e:
        return {"valid": False, "errors": [{"path": e.path, "message": e.message}]}
    return {"valid": True, "errors": []}


@router.get("/catalog")
async def get_rule_catalog():
    """Get the vocabulary the rule editor offers: packs, categories, operators."""
    try:
        packs = list_packs()
    except (OSError, DecisionEngineError) as e:
        logger.error(f"Failed to list rule packs: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list rule packs")

    return {
        "packs": packs,
        "categories": sorted(KNOWN_CATEGORIES),
        "operators": [op.value for op in Operator],
        "action_types": [action_type.value for action_type in ActionType],
        "action_priorities": list(ACTION_PRIORITIES),
        "rule_priority_range": [RULE_PRIORITY_MIN, RULE_PRIORITY_MAX],
    }


@router.post("/packs/{pack_id}/install")
async def install_rule_pack(pack_id: str, org_id: str = Depends(get_org_id)):
    installed = install_pack(get_services().rule_store, org_id, pack_id)
    audit(
        org_id,
        AuditAction.RULE_PACK_INSTALL,
        "rule_pack",
        pack_id,
        {"rule_ids": [rule.id for rule in installed]},
    )
    return {
        "pack_id": pack_id,
        "installed": len(installed),
        "rules": [rule_to_dict(rule) for rule in installed],
    }


@router.post("/evaluate")
@limiter.limit(EVALUATE_RATE_LIMIT)
def evaluate_claim(
    request: Request, body: EvaluateRequest, org_id: str = Depends(get_org_id)
):
    """Evaluate a stored claim against the organization's enabled rules."""
    result = get_services().pipeline.evaluate_claim(body.claim_id, org_id)
    audit(
        org_id,
        AuditAction.CLAIM_EVALUATE,
        "claim",
        body.claim_id,
        {
            "evaluation_id": result.evaluation_id,
            "recommendation_ids": [rec.id for rec in result.recommendations],
        },
        ip_address=request.client.host if request.client else None,
    )
    return result.to_dict()


@router.get("/{rule_id}")
async def get_rule(rule_id: str, org_id: str = Depends(get_org_id)):
    return rule_to_dict(get_services().rule_store.get_rule(rule_id, org_id=org_id))


@router.patch("/{rule_id}")
async def update_rule(rule_id: str, body: RulePatch, org_id: str = Depends(get_org_id)):
    patch = body.model_dump(exclude_unset=True)
    rule = get_services().rule_store.update_rule(rule_id, patch, org_id)
    audit(org_id, AuditAction.RULE_UPDATE, "rule", rule_id, {"fields": sorted(patch)})
    return rule_to_dict(rule)


@router.delete("/{rule_id}")
async def delete_rule(rule_id: str, org_id: str = Depends(get_org_id)):
    """Archive a rule. Archived rules stop firing but keep their history."""
    rule = get_services().rule_store.delete_rule(rule_id, org_id)
    audit(org_id, AuditAction.RULE_DELETE, "rule", rule_id, {"name": rule.name})
    return rule_to_dict(rule)
