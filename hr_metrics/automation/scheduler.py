"""APScheduler integration for the automation cycle.

Uses AsyncIOScheduler with CronTrigger to run ``MetricsAutomation.run_cycle``
on a configurable schedule.  No-ops gracefully if no cron expression is
configured, in which case an external timer (cron + scripts/run_automation.py)
is expected to drive sweeps.
"""

import contextlib
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from hr_metrics.automation.runner import MetricsAutomation
from hr_metrics.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _scheduled_cycle_job(automation: MetricsAutomation, retention_days: int) -> None:
    """Async job executed by the scheduler. Never raises into APScheduler."""
    try:
        report = await automation.run_cycle(retention_days=retention_days)
        logger.info("Automation cycle finished: batch %s", report["batch"]["status"])
    except Exception:
        logger.exception("Automation cycle failed")


def start_scheduler(automation: MetricsAutomation) -> None:
    """Start the APScheduler if a cron expression is configured."""
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    if not settings.automation_schedule_cron:
        logger.info("Automation scheduler disabled (AUTOMATION_SCHEDULE_CRON not set)")
        return

    trigger = CronTrigger.from_crontab(settings.automation_schedule_cron)
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _scheduled_cycle_job,
        trigger=trigger,
        args=[automation, settings.retention_days],
        id="metrics_automation",
        name="HR Metrics Automation Cycle",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info("Automation scheduler started with cron: %s", settings.automation_schedule_cron)


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Automation scheduler stopped")
        _scheduler = None
