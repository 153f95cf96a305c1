"""Admin API router aggregation."""

from fastapi import APIRouter

from redetour.api.admin.finance import router as finance_router

admin_router = APIRouter(prefix="/admin", tags=["Admin"])

admin_router.include_router(finance_router)

__all__ = ["admin_router"]
