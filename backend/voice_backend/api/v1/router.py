"""API v1 router aggregator.

All v1 endpoint routers are included here and mounted at /api/v1.
"""

from fastapi import APIRouter

from voice_backend.api.v1 import admin, entitlements, plans, subscriptions, tokens

router = APIRouter()

# =============================================================================
# Ledger and plans
# =============================================================================

router.include_router(tokens.router, prefix="/tokens", tags=["tokens"])
router.include_router(plans.router, prefix="/plans", tags=["plans"])
router.include_router(
    subscriptions.router, prefix="/subscriptions", tags=["subscriptions"]
)
router.include_router(
    entitlements.router, prefix="/entitlements", tags=["entitlements"]
)

# =============================================================================
# Admin
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
