"""API v1 router aggregator.

All v1 endpoint routers are included here; main.py mounts this router
at /api/v1.
"""

from fastapi import APIRouter

from credit_ledger.api.v1 import admin, checkout, credits, packages, webhooks

router = APIRouter()

# =============================================================================
# Tenant Routers (X-API-Key)
# =============================================================================

router.include_router(credits.router, prefix="/credits", tags=["credits"])
router.include_router(packages.router, prefix="/packages", tags=["packages"])
router.include_router(checkout.router, prefix="/checkout", tags=["checkout"])

# =============================================================================
# Payment Provider Callbacks (signature-authenticated)
# =============================================================================

router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# =============================================================================
# Admin (Bearer JWT)
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
