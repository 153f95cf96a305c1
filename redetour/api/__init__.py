"""API router aggregation."""

from fastapi import APIRouter

from redetour.api.admin import admin_router
from redetour.api.checkout import router as checkout_router
from redetour.api.finance import router as finance_router
from redetour.api.health import router as health_router
from redetour.api.webhooks import router as webhooks_router

# Main API router (for /api/* endpoints)
api_router = APIRouter(prefix="/api")

api_router.include_router(health_router)
api_router.include_router(webhooks_router)
api_router.include_router(checkout_router)
api_router.include_router(finance_router)
api_router.include_router(admin_router)

__all__ = ["api_router"]
