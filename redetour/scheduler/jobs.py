"""
Background job definitions using APScheduler.

Jobs include:
- Commission reconciliation (rebuilds commissions whose write failed)
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from redetour.config import settings
from redetour.db import get_db_context
from redetour.services.reconciliation import reconcile_commission_issues

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def commission_reconciliation_job():
    """Repair open commission write failures."""
    logger.debug("Running commission reconciliation job")
    try:
        async with get_db_context() as db:
            report = await reconcile_commission_issues(db)
            if report.failed:
                logger.warning(
                    f"Commission reconciliation job: {report.failed} issue(s) still open"
                )
    except Exception:
        logger.exception("Commission reconciliation job error")


def setup_scheduler():
    """
    Configure and add all scheduled jobs.

    Called during application startup.
    """
    scheduler.add_job(
        commission_reconciliation_job,
        trigger=IntervalTrigger(minutes=settings.reconcile_interval_minutes),
        id="commission_reconciliation",
        name="Rebuild missing commissions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info("Scheduler configured with jobs")
