"""API route modules for the Claim Decision Engine.

This package contains focused routers that are registered with the main FastAPI app.
Each router handles a specific domain of functionality.

Routers:
- rules: Rule administration, rule packs and claim evaluation
- claims: Claim ingestion from the CRM
- outcomes: Outcome recording and the claim status webhook
- analytics: Learning metrics, leaderboard and rule effectiveness
- explain: Explanations of past recommendations
- audit: Audit logging and export
"""

from .analytics import router as analytics_router
from .audit import router as audit_router
from .claims import router as claims_router
from .explain import router as explain_router
from .outcomes import router as outcomes_router
from .rules import router as rules_router

__all__ = [
    "analytics_router",
    "audit_router",
    "claims_router",
    "explain_router",
    "outcomes_router",
    "rules_router",
]
