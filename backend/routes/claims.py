"""Claim ingestion routes.

The CRM pushes claim records here; evaluation reads them back through
``ClaimSource``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rules.errors import TenantIsolationViolation
from schemas import ClaimUpsertRequest
from services import get_services

from .audit import AuditAction, audit
from .dependencies import get_org_id

router = APIRouter(prefix="/api/claims", tags=["claims"])


@router.put("/{claim_id}")
def upsert_claim(claim_id: str, body: ClaimUpsertRequest, org_id: str = Depends(get_org_id)):
    """Store a claim and, when ``evaluate`` is set, evaluate it right away."""
    services = get_services()
    related = body.related()
    services.claim_source.upsert_claim(claim_id, org_id, body.claim, related)
    audit(
        org_id,
        AuditAction.CLAIM_UPSERT,
        "claim",
        claim_id,
        {"entities": sorted(related)},
    )

    response = {"claim_id": claim_id, "org_id": org_id, "stored": True}
    if body.evaluate:
        result = services.pipeline.evaluate_claim(claim_id, org_id)
        audit(
            org_id,
            AuditAction.CLAIM_EVALUATE,
            "claim",
            claim_id,
            {"evaluation_id": result.evaluation_id},
        )
        response["evaluation"] = result.to_dict()
    return response


@router.get("/{claim_id}/recommendations")
async def get_claim_recommendations(claim_id: str, org_id: str = Depends(get_org_id)):
    """Return the recommendations of the claim's latest evaluation."""
    services = get_services()
    claim_org = services.claim_source.get_claim_org(claim_id)
    if claim_org != org_id:
        raise TenantIsolationViolation(
            f"Claim {claim_id} belongs to another organization",
            expected_org=org_id,
            actual_org=claim_org,
        )

    evaluation = services.recommendation_store.latest_evaluation(claim_id, org_id)
    if evaluation is None:
        return {"claim_id": claim_id, "evaluation_id": None, "recommendations": []}

    evaluation["recommendations"] = [rec.to_dict() for rec in evaluation["recommendations"]]
    return evaluation
