"""Shared FastAPI dependencies for the decision engine routers."""

from __future__ import annotations

from fastapi import Header, HTTPException, Query
from slowapi import Limiter
from slowapi.util import get_remote_address

from rules.errors import TenantIsolationViolation

# Shared with app.state.limiter so route decorators and the app agree
limiter = Limiter(key_func=get_remote_address)


def get_org_id(x_org_id: str | None = Header(default=None, alias="X-Org-Id")) -> str:
    """Resolve the caller's organization from the ``X-Org-Id`` header."""
    if not x_org_id or not x_org_id.strip():
        raise HTTPException(status_code=401, detail="X-Org-Id header is required")
    return x_org_id.strip()


def check_org_param(
    org_id: str | None = Query(default=None, description="Organization to query"),
    x_org_id: str | None = Header(default=None, alias="X-Org-Id"),
) -> str:
    """Resolve the organization for endpoints that also accept ``?org_id=``.

    The query parameter may only repeat the caller's own organization.
    """
    caller = get_org_id(x_org_id)
    if org_id is not None and org_id != caller:
        raise TenantIsolationViolation(
            f"Cannot read data for organization {org_id}",
            expected_org=caller,
            actual_org=org_id,
        )
    return caller
