"""
APScheduler configuration and job scheduling for forgeback.

Manages:
- The nightly backup run (based on BACKUP_SCHEDULE_CRON)
- Manual run triggers
"""

import logging
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from forgeback.backup.executor import execute_backup_run

logger = logging.getLogger(__name__)

NIGHTLY_JOB_ID = 'nightly_backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance

    Returns:
        BackgroundScheduler

    Raises:
        ValueError: If BACKUP_SCHEDULE_CRON is not a valid crontab expression
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app
    tz = app.config.get('SCHEDULER_TIMEZONE', 'UTC')

    # Configure job stores and executors
    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    # One worker: runs never overlap, so repositories are never processed twice at once
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 3600  # 1 hour grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=tz
    )

    scheduler.add_job(
        func=_execute_run_wrapper,
        trigger=CronTrigger.from_crontab(app.config['BACKUP_SCHEDULE_CRON'], timezone=tz),
        id=NIGHTLY_JOB_ID,
        name='Nightly Backup',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info("Scheduler already running (state=%s)", scheduler.state)
        return

    scheduler.start()
    logger.info("APScheduler started (state=%s)", scheduler.state)

    for job in scheduler.get_jobs():
        next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
        logger.info("  - %s: %s (next run: %s)", job.id, job.name, next_run)


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_run_wrapper():
    """
    Execute a backup run in scheduler context.

    Runs inside the stored app context so the run record can be persisted.
    """
    with flask_app.app_context():
        try:
            logger.info("Scheduler executing backup run")
            run = execute_backup_run(flask_app.config)
            logger.info("Backup run %s completed with status: %s", run.id, run.status)
        except Exception:
            logger.exception("Scheduled backup run failed")


def trigger_run_now() -> str:
    """
    Manually trigger a backup run.

    Returns:
        ID of the one-shot scheduler job

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp())}"

    # 1 second delay to avoid racing the caller's response
    scheduler.add_job(
        func=_execute_run_wrapper,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Backup',
        replace_existing=False
    )

    logger.info("Manually triggered backup run (%s)", job_id)
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    return scheduler is not None and scheduler.running
