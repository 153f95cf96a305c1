"""
Redetour payments - commission and revenue-split ledger

Main FastAPI application with:
- Stripe webhook booking transactions, commissions and subscriptions
- Checkout session creation
- Finance read API and admin payout management
- Background commission reconciliation
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from redetour.api import api_router
from redetour.config import settings
from redetour.scheduler.jobs import scheduler, setup_scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Starts the reconciliation scheduler (unless disabled)

    Shutdown:
    - Stops the scheduler
    """
    logger.info("Starting Redetour payments...")

    if settings.scheduler_enabled:
        setup_scheduler()
        scheduler.start()
        logger.info("Scheduler started")

    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set; every webhook will be rejected")

    yield

    # Shutdown
    logger.info("Shutting down Redetour payments...")
    if scheduler.running:
        scheduler.shutdown(wait=False)


# Create FastAPI application
app = FastAPI(
    title="Redetour Payments",
    description="Commission and revenue-split ledger",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "redetour.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
