"""Outcome recording routes.

Outcomes are append-only. Repeated deliveries of the same observation
(webhook retries, double clicks) are absorbed: the caller gets the
originally recorded outcome back with ``deduplicated: true``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from outcomes.models import OutcomeResult
from rules.errors import TenantIsolationViolation
from schemas import ClaimStatusWebhook, OutcomeRequest
from services import get_services

from .audit import AuditAction, audit
from .dependencies import get_org_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/outcomes", tags=["outcomes"])

# Claim statuses (and CRM lifecycle stages) that close a claim
STATUS_RESULTS: dict[str, OutcomeResult] = {
    "approved": OutcomeResult.SUCCESS,
    "completed": OutcomeResult.SUCCESS,
    "depreciation": OutcomeResult.SUCCESS,
    "denied": OutcomeResult.FAILURE,
}


@router.post("")
def record_outcome(
    body: OutcomeRequest, response: Response, org_id: str = Depends(get_org_id)
):
    """Record an observed outcome.

    Returns 201 when a new outcome was stored, 200 when it was deduplicated.
    """
    try:
        outcome, created = get_services().recorder.record_outcome(
            body.claim_id,
            body.result,
            org_id=org_id,
            recommendation_id=body.recommendation_id,
            rule_id=body.rule_id,
            agent_id=body.agent_id,
            agent_name=body.agent_name,
            observed_at=body.observed_at,
            compensates_id=body.compensates_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    response.status_code = 201 if created else 200
    if created:
        audit(
            org_id,
            AuditAction.OUTCOME_RECORD,
            "outcome",
            outcome.id,
            {"claim_id": body.claim_id, "result": outcome.observed_result.value},
            actor_id=body.agent_id,
        )
    return {"outcome": outcome.to_dict(), "deduplicated": not created}


@router.get("")
async def list_outcomes(
    org_id: str = Depends(get_org_id),
    claim_id: str | None = Query(default=None, description="Filter by claim"),
    limit: int = Query(default=100, ge=1, le=1000),
):
    """List recorded outcomes, newest first."""
    outcomes = get_services().recorder.list_outcomes(org_id)
    if claim_id:
        outcomes = [outcome for outcome in outcomes if outcome.claim_id == claim_id]
    outcomes = list(reversed(outcomes))
    return {
        "outcomes": [outcome.to_dict() for outcome in outcomes[:limit]],
        "total": len(outcomes),
    }


@router.post("/webhook")
def claim_status_webhook(body: ClaimStatusWebhook, org_id: str = Depends(get_org_id)):
    """Turn a claim status change into outcomes.

    A closing status records one outcome for every recommendation of the
    claim's latest evaluation. Other statuses are acknowledged and ignored.
    """
    services = get_services()
    status = body.status.strip().lower()
    result = STATUS_RESULTS.get(status)
    if result is None:
        return {"claim_id": body.claim_id, "status": status, "ignored": True, "outcomes": []}

    claim_org = services.claim_source.get_claim_org(body.claim_id)
    if claim_org != org_id:
        raise TenantIsolationViolation(
            f"Claim {body.claim_id} belongs to another organization",
            expected_org=org_id,
            actual_org=claim_org,
        )
    evaluation = services.recommendation_store.latest_evaluation(body.claim_id, org_id)
    if evaluation is None:
        logger.info(
            f"No evaluation for claim {body.claim_id}; status {status} not attributed",
            extra={"org_id": org_id, "claim_id": body.claim_id},
        )
        return {"claim_id": body.claim_id, "status": status, "ignored": True, "outcomes": []}

    recorded = []
    for recommendation in evaluation["recommendations"]:
        outcome, created = services.recorder.record_outcome(
            body.claim_id,
            result,
            org_id=org_id,
            recommendation_id=recommendation.id,
            agent_id=body.agent_id,
            agent_name=body.agent_name,
            observed_at=body.observed_at,
        )
        recorded.append({"outcome": outcome.to_dict(), "deduplicated": not created})

    audit(
        org_id,
        AuditAction.OUTCOME_WEBHOOK,
        "claim",
        body.claim_id,
        {"status": status, "evaluation_id": evaluation["evaluation_id"]},
        actor_id=body.agent_id,
    )
    return {
        "claim_id": body.claim_id,
        "status": status,
        "ignored": False,
        "evaluation_id": evaluation["evaluation_id"],
        "outcomes": recorded,
    }
