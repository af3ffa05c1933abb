"""Optional in-process daily trigger for the renewal runner.

Disabled by default; an external cron hitting ``POST /api/admin/renewals/run``
works just as well.
"""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.config import settings
from src.deps import get_engine, simpro_client_factory
from src.handlers.renewal_runner import RenewalRunner

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def run_daily_renewals() -> None:
    try:
        runner = RenewalRunner.for_engine(get_engine(), simpro_client_factory)
        report = await runner.run(
            dry_run=settings.renewal_dry_run,
            include_expiry=settings.renewal_include_expiry,
        )
    except Exception as exc:
        logger.error("Scheduled renewal run failed: %s", exc, exc_info=True)
        return
    logger.info(
        "Scheduled renewal run for %s: %d actions (dry_run=%s)",
        report.today, len(report.actions), report.dry_run,
    )


def start_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        logger.warning("Renewal scheduler already running")
        return
    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        run_daily_renewals,
        trigger=CronTrigger(hour=settings.renewal_schedule_hour, minute=0, timezone="UTC"),
        id="daily_renewal_runner",
        name="Create due maintenance renewal reminders",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info("Renewal scheduler started (daily at %02d:00 UTC)", settings.renewal_schedule_hour)


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Renewal scheduler stopped")
