"""
APScheduler Configuration

Background job scheduler for commission batching. Jobs are registered in
start_scheduler() according to settings and run in the application's event
loop.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from commission_engine.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 3600,  # A batch run an hour late is still wanted
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_payment_batch():
    """Wrapper called by APScheduler for the monthly payment batch."""
    from commission_engine.jobs.payment_jobs import batch_previous_month

    try:
        result = await batch_previous_month()
        logger.info(
            f"Job 'commission_payment_batch' completed: "
            f"{result.get('payments_created', 0)}/{result.get('recipients', 0)} recipients paid"
        )
    except Exception as e:
        logger.error(f"Job 'commission_payment_batch' failed: {e}")


def register_jobs():
    """Add the jobs enabled in settings. Safe to call repeatedly."""
    if settings.PAYMENT_BATCH_ENABLED:
        scheduler.add_job(
            run_payment_batch,
            'cron',
            day=settings.PAYMENT_BATCH_DAY,
            hour=settings.PAYMENT_BATCH_HOUR,
            minute=0,
            id='commission_payment_batch',
            name='Commission Payment Batch (previous month)',
            replace_existing=True,
        )


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        register_jobs()
        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            # Pending jobs (scheduler not started) have no next_run_time yet
            'next_run_time': str(job.next_run_time) if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
