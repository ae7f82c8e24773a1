"""
eCFR Analyzer - Job Scheduler

APScheduler BackgroundScheduler for the periodic full refresh. Pipeline
work is blocking (threads + psycopg pool), so jobs run on the scheduler's
thread pool rather than the event loop.

Disabled unless ECFR_REFRESH_INTERVAL_MINUTES > 0.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import Settings, get_settings
from .core.errors import ImportAlreadyRunning
from .dependencies import get_checksum_service, get_import_service

logger = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None


def get_scheduler() -> BackgroundScheduler:
    """
    Get the scheduler instance.

    Raises:
        RuntimeError: If scheduler not initialized
    """
    if _scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")
    return _scheduler


# =============================================================================
# Jobs
# =============================================================================


def refresh_job() -> None:
    """Full import followed by an agency checksum recalculation."""
    service = get_import_service()
    try:
        final = service.run("all")
    except ImportAlreadyRunning as exc:
        logger.info(f"Scheduled refresh skipped: {exc}")
        return

    if final.error:
        logger.warning(f"Scheduled refresh finished with error: {final.error}")
        return

    stats = get_checksum_service().recalculate_all()
    logger.info(f"Scheduled refresh complete; checksums: {stats.as_dict()}")


# =============================================================================
# Scheduler Initialization
# =============================================================================


def init_scheduler(settings: Settings | None = None) -> Optional[BackgroundScheduler]:
    """Create, register and start the scheduler. Returns None when disabled."""
    global _scheduler

    settings = settings or get_settings()
    if not settings.scheduler_enabled:
        logger.info("Scheduled refresh disabled (ECFR_REFRESH_INTERVAL_MINUTES=0)")
        return None

    logger.info("Initializing job scheduler...")
    _scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
    )
    _register_jobs(_scheduler, settings)
    _scheduler.start()

    for job in _scheduler.get_jobs():
        logger.info(f"  - {job.id}: {job.trigger}")
    return _scheduler


def _register_jobs(scheduler: BackgroundScheduler, settings: Any) -> None:
    scheduler.add_job(
        refresh_job,
        trigger=IntervalTrigger(minutes=settings.ECFR_REFRESH_INTERVAL_MINUTES),
        id="ecfr_refresh",
        name="eCFR Full Refresh",
        replace_existing=True,
    )


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is None:
        return
    logger.info("Stopping job scheduler...")
    _scheduler.shutdown(wait=False)
    _scheduler = None
