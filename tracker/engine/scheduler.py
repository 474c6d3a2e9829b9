"""APScheduler integration for FastAPI.

Runs the poll cycle as a single interval job.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tracker.config import settings
from tracker.utils.constants import VALID_REFRESH_INTERVALS

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

POLL_JOB_ID = "poll_cycle"


async def run_poll_job():
    from tracker.engine.poll_cycle import get_tracker

    tracker = get_tracker()
    if tracker is None:
        logger.warning("Poll job fired before the tracker was initialized")
        return
    await tracker.run_cycle()


def validate_interval(seconds: int) -> int:
    if seconds not in VALID_REFRESH_INTERVALS:
        allowed = ", ".join(str(s) for s in VALID_REFRESH_INTERVALS)
        raise ValueError(f"refresh interval must be one of: {allowed}")
    return seconds


def add_poll_job(seconds: int):
    """Add or replace the poll job."""
    scheduler.add_job(
        run_poll_job,
        trigger=IntervalTrigger(seconds=seconds),
        id=POLL_JOB_ID,
        name="Poll cycle",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    logger.info(f"Scheduled poll cycle every {seconds}s")


def reschedule_poll_job(seconds: int):
    """Reschedule the poll job with a new interval."""
    validate_interval(seconds)
    if scheduler.get_job(POLL_JOB_ID):
        scheduler.reschedule_job(POLL_JOB_ID, trigger=IntervalTrigger(seconds=seconds))
        logger.info(f"Rescheduled poll cycle to every {seconds}s")
    else:
        add_poll_job(seconds)


def start_scheduler(interval_seconds: int | None = None):
    """Start the scheduler with the poll job."""
    add_poll_job(interval_seconds or settings.refresh_interval_seconds)
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if getattr(j, "next_run_time", None) else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
