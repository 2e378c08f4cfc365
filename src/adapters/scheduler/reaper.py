"""
Stale registration reaper - periodic expiry of abandoned pending registrations.

Runs RegistrationService.expire_stale on an APScheduler BackgroundScheduler
so the active-email uniqueness constraint is released for registrations
that were never verified or paid. Lookups already expire lazily; the
reaper keeps the table from filling with dead rows. Registrations that
still hold an open payment intent only expire once the application job
has voided that intent with the provider.

The job is idempotent and only one instance runs at a time. Failures are
logged by the job listener and never stop the scheduler.
"""

import logging
from collections.abc import Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

REAPER_JOB_ID = "expire_stale_registrations"

JOB_DEFAULTS = {
    "coalesce": True,  # Combine missed runs into one
    "max_instances": 1,
    "misfire_grace_time": 60,
}


def _job_listener(event: JobExecutionEvent) -> None:
    if event.exception:
        logger.error("Reaper job %s failed: %s", event.job_id, event.exception, exc_info=event.exception)
    else:
        logger.debug("Reaper job %s finished: expired=%s", event.job_id, event.retval)


def create_reaper(expire_stale: Callable[[], int], interval_seconds: int) -> BackgroundScheduler:
    """
    Build a scheduler that calls expire_stale every interval_seconds.

    The scheduler is returned unstarted.
    """
    scheduler = BackgroundScheduler(timezone="UTC", job_defaults=JOB_DEFAULTS)
    scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
    scheduler.add_job(
        expire_stale,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=REAPER_JOB_ID,
        name="Expire stale pending registrations",
        replace_existing=True,
    )
    return scheduler


def start_reaper(scheduler: BackgroundScheduler) -> None:
    if scheduler.running:
        return
    scheduler.start()
    logger.info("Reaper started: job=%s", REAPER_JOB_ID)


def stop_reaper(scheduler: BackgroundScheduler) -> None:
    if not scheduler.running:
        return
    scheduler.shutdown(wait=False)
    logger.info("Reaper stopped")
