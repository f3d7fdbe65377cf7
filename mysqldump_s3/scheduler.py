"""
APScheduler configuration for periodic backups.

Runs the backup in the foreground on a crontab schedule (UTC). At most one
backup runs at a time; a missed or overlapping firing is coalesced into a
single run.
"""

import logging
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from mysqldump_s3.backup.errors import ReplicationControlError, RunTerminated
from mysqldump_s3.config import ConfigValidationError


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def parse_schedule(cron_expression: str) -> CronTrigger:
    """
    Parse a five-field crontab expression into a UTC trigger.

    Raises:
        ConfigValidationError: If the expression is invalid
    """
    try:
        return CronTrigger.from_crontab(cron_expression, timezone='UTC')
    except ValueError as e:
        raise ConfigValidationError(f"invalid schedule '{cron_expression}': {e}") from e


def init_scheduler(run_backup: Callable[[], object], cron_expression: str):
    """
    Initialize and configure APScheduler.

    Args:
        run_backup: Callable performing one complete backup run
        cron_expression: Crontab expression, evaluated in UTC

    Returns:
        The configured BlockingScheduler
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    trigger = parse_schedule(cron_expression)

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one backup at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    scheduler.add_job(
        func=run_scheduled_backup,
        args=[run_backup],
        trigger=trigger,
        id='backup',
        name='Database backup',
        replace_existing=True
    )

    return scheduler


def run_scheduled_backup(run_backup: Callable[[], object]):
    """
    Run one scheduled backup.

    A failed run is logged and the schedule continues. A replication
    resume failure stops the scheduler: replication is left paused and
    needs an operator. A run cancelled by a signal returns None; the
    scheduler is already shutting down.
    """
    try:
        result = run_backup()
    except ReplicationControlError:
        logger.critical("Replication could not be resumed, stopping scheduler")
        stop_scheduler(wait=False)
        raise
    except RunTerminated as e:
        logger.warning(f"Scheduled backup cancelled (exit status {e.code})")
        return None
    except Exception as e:
        logger.exception(f"Scheduled backup failed: {e}")
        return None

    status = getattr(result, 'status', None)
    if status == 'failed':
        logger.error(f"Scheduled backup finished with failures: {', '.join(result.failed)}")
    else:
        logger.info("Scheduled backup finished")
    return result


def start_scheduler():
    """
    Start the scheduler and block until it is stopped.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job {job.id}: {job.name} ({job.trigger})")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted")
        stop_scheduler()


def stop_scheduler(wait: bool = True):
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("APScheduler stopped")
