"""
APScheduler configuration and job scheduling for Archivist.

Manages:
- Scheduled transfer tasks (based on cron expressions)
- Daily retention policy enforcement
- Manual task triggers
- Re-invoking tasks promoted from the execution gate's wait queue
"""

import logging
import uuid
from datetime import datetime, timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from archivist.backup.executor import run_task
from archivist.backup.gate import execution_gate
from archivist.backup.retention import RetentionManager


logger = logging.getLogger(__name__)

# Global scheduler instance, Flask app and task registry references
scheduler = None
flask_app = None
task_registry = None

TASK_JOB_PREFIX = 'task_'
MANUAL_JOB_PREFIX = 'manual_'


def init_scheduler(app, registry):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
        registry: TaskRegistry holding the current task definitions
    """
    global scheduler, flask_app, task_registry

    if scheduler is not None:
        return scheduler

    # Store references for use in background threads
    flask_app = app
    task_registry = registry

    jobstores = {
        'default': MemoryJobStore()
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=3)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    scheduler.add_job(
        func=enforce_retention_policies,
        trigger=CronTrigger.from_crontab(app.config.get('RETENTION_CRON', '0 2 * * *')),
        id='retention_cleanup',
        name='Daily Retention Cleanup',
        replace_existing=True
    )

    execution_gate.add_promotion_listener(_on_task_promoted)

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after the Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        jobs = scheduler.get_jobs()
        for job in jobs:
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def sync_task_jobs():
    """
    Synchronize scheduled jobs with the current task definitions.

    This function should be called:
    - After app startup
    - After the definitions have been reloaded
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    tasks = task_registry.task_set.tasks
    scheduled_job_ids = {job.id for job in scheduler.get_jobs() if job.id.startswith(TASK_JOB_PREFIX)}

    for task in tasks.values():
        job_id = f"{TASK_JOB_PREFIX}{task.name}"

        if task.schedule:
            _add_scheduled_job(task)
        else:
            logger.info(f"Task {task.name} has no schedule, manual runs only")
            if job_id in scheduled_job_ids:
                _remove_scheduled_job(task.name)

        scheduled_job_ids.discard(job_id)

    # Remove jobs of tasks that no longer exist
    for leftover_id in scheduled_job_ids:
        _remove_scheduled_job(leftover_id[len(TASK_JOB_PREFIX):])


def _add_scheduled_job(task):
    """
    Add (or replace) the cron job of a task.

    Args:
        task: Task record
    """
    job_id = f"{TASK_JOB_PREFIX}{task.name}"

    try:
        trigger = CronTrigger.from_crontab(task.schedule, timezone=scheduler.timezone)
    except ValueError as e:
        logger.error(f"Invalid cron expression for task {task.name}: {task.schedule} ({e})")
        return

    scheduler.add_job(
        func=_execute_task_wrapper,
        args=[task.name],
        trigger=trigger,
        id=job_id,
        name=f"Transfer: {task.name}",
        replace_existing=True
    )

    logger.info(f"Scheduled task {task.name} with cron expression {task.schedule}")


def _remove_scheduled_job(task_name: str):
    """
    Remove a task's cron job from the scheduler.

    Args:
        task_name: Task name
    """
    job_id = f"{TASK_JOB_PREFIX}{task_name}"

    if scheduler.get_job(job_id):
        scheduler.remove_job(job_id)
        logger.info(f"Removed scheduled task: {task_name}")


def _execute_task_wrapper(task_name: str, admitted: bool = False):
    """
    Run a task inside the Flask app context from a scheduler thread.

    Failures have already been reported to the execution gate by the
    executor; here they are only logged.

    Args:
        task_name: Task to execute
        admitted: True when the gate has already promoted the task to running
    """
    with flask_app.app_context():
        try:
            logger.info(f"Scheduler executing task: {task_name} (admitted={admitted})")
            result = run_task(
                task_name,
                task_registry.task_set,
                admitted=admitted,
                temp_root=flask_app.config.get('TEMP_DIR')
            )
            logger.info(f"Task {task_name} finished with status: {result.status}")
        except Exception as e:
            logger.error(f"Scheduler task {task_name} failed: {e}")


def trigger_task_now(task_name: str, admitted: bool = False):
    """
    Run a task as soon as possible without blocking the caller.

    Args:
        task_name: Task to execute
        admitted: True when the gate has already promoted the task to running

    Raises:
        ValueError: If the task is not defined
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    task = task_registry.task_set.get_task(task_name)
    if task is None:
        raise ValueError(f"Task not found: {task_name}")

    scheduler.add_job(
        func=_execute_task_wrapper,
        args=[task_name, admitted],
        trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
        id=f"{MANUAL_JOB_PREFIX}{task_name}_{uuid.uuid4().hex}",
        name=f"Manual: {task_name}",
        replace_existing=False
    )

    logger.info(f"Manually triggered task: {task_name}")


def _on_task_promoted(task_name: str):
    """Start the pipeline of a task the execution gate promoted from its queue."""
    trigger_task_now(task_name, admitted=True)


def enforce_retention_policies():
    """
    Enforce retention policies for all tasks.

    Called by the scheduler on a daily basis.
    """
    with flask_app.app_context():
        manager = RetentionManager()
        return manager.enforce_all_policies(task_registry.task_set)


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
            'next_run': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    return scheduler is not None and scheduler.running


def reset_scheduler():
    """Drop the scheduler and its references. Used on shutdown and in tests."""
    global scheduler, flask_app, task_registry

    stop_scheduler()
    execution_gate.remove_promotion_listener(_on_task_promoted)
    scheduler = None
    flask_app = None
    task_registry = None
