"""Recommendation explanation route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from recommendations.explain import explain
from services import get_services

from .dependencies import get_org_id

router = APIRouter(prefix="/api/explain", tags=["explain"])


@router.get("/{recommendation_id}")
async def explain_recommendation(recommendation_id: str, org_id: str = Depends(get_org_id)):
    """Explain a past recommendation from what was stored when it was made.

    The confidence score is the one originally shown, not a recomputation.
    """
    return explain(get_services().recommendation_store, recommendation_id, org_id=org_id).to_dict()
