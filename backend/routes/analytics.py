"""Learning analytics routes.

Dashboard numbers come from cached snapshots refreshed by the scheduler;
``refresh=true`` forces a rebuild from the outcome log.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from outcomes.effectiveness import TIME_RANGES
from outcomes.models import MetricScope
from services import get_services

from .dependencies import check_org_param, get_org_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("")
async def get_analytics(
    org_id: str = Depends(check_org_param),
    time_range: str = Query(default="30d", description="One of 7d, 30d, 90d, all"),
    refresh: bool = Query(default=False, description="Bypass the cached snapshot"),
):
    """Get learning metrics, the agent leaderboard and rule effectiveness."""
    if time_range not in TIME_RANGES:
        raise HTTPException(
            status_code=422, detail=f"time_range must be one of {list(TIME_RANGES)}"
        )
    return get_services().aggregator.analytics(org_id, time_range, refresh=refresh)


@router.get("/effectiveness/{scope}/{scope_id}")
async def get_effectiveness(
    scope: MetricScope,
    scope_id: str,
    org_id: str = Depends(get_org_id),
    window: str = Query(default="7d", description="One of 7d, 30d, 90d, all"),
):
    """Recompute one rule's or agent's effectiveness from the outcome log."""
    if window not in TIME_RANGES:
        raise HTTPException(status_code=422, detail=f"window must be one of {list(TIME_RANGES)}")
    services = get_services()
    if scope is MetricScope.RULE:
        services.rule_store.get_rule(scope_id, org_id=org_id)
    return services.aggregator.recompute(scope, scope_id, window, org_id=org_id).to_dict()
