# app/scheduler.py
"""
In-process scheduler for the claim expiry sweep.

A single APScheduler BackgroundScheduler runs expire_stale_claims every
CLAIM_SWEEP_INTERVAL_MINUTES. Several app workers may each run a scheduler;
the Redis lock inside the job keeps the sweeps from overlapping.
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from app.background_tasks.claim_tasks import expire_stale_claims
from app.core.config import settings

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "expire_stale_claims"

scheduler = None


def _log_job_error(event):
    exc = event.exception
    logger.error(
        "Job %s raised during claim expiry: %s",
        event.job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _log_job_missed(event):
    # Coalesced; the next run sweeps everything that is overdue anyway
    logger.warning(
        "Job %s skipped its run at %s",
        event.job_id,
        event.scheduled_run_time,
    )


def init_scheduler():
    """Start the sweep scheduler once per process and return it."""
    global scheduler

    if scheduler is not None:
        logger.warning("Claim sweep scheduler already running")
        return scheduler

    minutes = settings.CLAIM_SWEEP_INTERVAL_MINUTES
    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': minutes * 60
        }
    )

    scheduler.add_job(
        func=expire_stale_claims,
        trigger=IntervalTrigger(minutes=minutes),
        id=SWEEP_JOB_ID,
        name='Expire overdue PENDING claims',
        replace_existing=True
    )
    scheduler.add_listener(_log_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_log_job_missed, EVENT_JOB_MISSED)

    scheduler.start()
    logger.info(f"Claim sweep scheduled every {minutes} minutes")

    return scheduler


def shutdown_scheduler():
    """Stop the scheduler, letting a running sweep finish first."""
    global scheduler

    if scheduler is None:
        return

    scheduler.shutdown(wait=True)
    scheduler = None
    logger.info("Claim sweep scheduler stopped")


def get_scheduler_status():
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": [
            {
                "id": job.id,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in scheduler.get_jobs()
        ],
    }
