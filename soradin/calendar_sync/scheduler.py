"""In-process interval trigger for the polling sync pass."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from soradin import database
from soradin.calendar_sync.sync import SyncSummary, run_sync_pass
from soradin.core import config

logger = logging.getLogger(__name__)

SYNC_JOB_ID = 'calendar-sync'

_scheduler: BackgroundScheduler | None = None


def run_scheduled_sync() -> SyncSummary:
    db = database.SessionLocal()
    try:
        return run_sync_pass(db)
    finally:
        db.close()


def start_scheduler() -> BackgroundScheduler:
    """Start the sync job once per process; later calls return the running scheduler."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    _scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 60,
        },
    )
    _scheduler.add_job(
        run_scheduled_sync,
        IntervalTrigger(minutes=config.SYNC_INTERVAL_MINUTES),
        id=SYNC_JOB_ID,
        replace_existing=True,
    )
    _scheduler.start()
    logger.info('Calendar sync scheduled every %s minutes', config.SYNC_INTERVAL_MINUTES)
    return _scheduler


def shutdown_scheduler(wait: bool = False) -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=wait)
    _scheduler = None
