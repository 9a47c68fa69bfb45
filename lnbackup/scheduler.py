"""
APScheduler configuration and the background task queue.

Manages:
- Submission of backup/restore tasks as one-shot jobs
- Serial execution (one task at a time)
- Recovery of tasks interrupted by a restart
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from lnbackup import db
from lnbackup.models import TaskHistory
from lnbackup.backup.executor import execute_task
from lnbackup.backup.jobs import validate_payload

logger = logging.getLogger(__name__)

TASK_JOB_PREFIX = 'task_'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def _count_jobs_in_database() -> int:
    """
    Count jobs in APScheduler's persistent job store.

    This is used as a fallback to detect scheduler health when
    the in-memory scheduler object is not available (e.g., in
    Flask's reloader parent process).

    Returns:
        Number of jobs in database, or 0 if error
    """
    try:
        from sqlalchemy import text
        result = db.session.execute(
            text("SELECT COUNT(*) FROM apscheduler_jobs")
        ).scalar()
        return result or 0
    except Exception:
        # Database not initialized or table doesn't exist
        return 0


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    # A single worker keeps tasks strictly serial
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,
        'max_instances': 1,
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state}, running={scheduler.running})")

        jobs = scheduler.get_jobs()
        if jobs:
            logger.info(f"Loaded {len(jobs)} pending tasks:")
            for job in jobs:
                next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
                logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
        else:
            logger.info("No pending tasks loaded")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def submit_task(name: str, payload: Dict[str, Any]) -> TaskHistory:
    """
    Queue a backup/restore task for background execution.

    Args:
        name: Task name (LOCAL_BACKUP, LOCAL_RESTORE, SELF_HOST_BACKUP, SELF_HOST_RESTORE)
        payload: Task payload

    Returns:
        The queued TaskHistory record

    Raises:
        ValidationError: If the payload does not fit the task name
        RuntimeError: If the scheduler is not initialized
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    payload = validate_payload(name, payload)

    task = TaskHistory(name=name, payload=json.dumps(payload), status='queued')
    db.session.add(task)
    db.session.commit()

    _enqueue(task)
    logger.info(f"Queued task {task.id}: {name}")
    return task


def _enqueue(task: TaskHistory):
    """
    Add a one-shot job running the task.

    Args:
        task: Queued TaskHistory record
    """
    global scheduler

    # Short delay so the submitting request commits before the worker reads the row
    scheduler.add_job(
        func=_execute_task_wrapper,
        args=[task.id],
        trigger=DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=1)),
        id=f"{TASK_JOB_PREFIX}{task.id}",
        name=f"{task.name} #{task.id}",
        replace_existing=True
    )


def remove_task_job(task_id: int) -> bool:
    """
    Remove the pending job of a task that will not run.

    Args:
        task_id: TaskHistory ID

    Returns:
        True if a pending job was removed
    """
    global scheduler

    if scheduler is None:
        return False

    try:
        scheduler.remove_job(f"{TASK_JOB_PREFIX}{task_id}")
        return True
    except JobLookupError:
        return False


def sync_tasks():
    """
    Reconcile task history with the job store after startup.

    - Tasks left running or cancelling by a previous process are closed
    - Queued tasks without a pending job are queued again
    - Pending jobs whose task is no longer queued are removed
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    interrupted = TaskHistory.query.filter(
        TaskHistory.status.in_(['running', 'cancelling'])
    ).all()
    for task in interrupted:
        if task.status == 'cancelling':
            task.status = 'cancelled'
        else:
            task.status = 'failed'
            task.error_message = 'Interrupted by application restart'
        task.completed_at = datetime.utcnow()
        logger.warning(f"Task {task.id} ({task.name}) was interrupted, marked {task.status}")
    db.session.commit()

    scheduled_job_ids = {
        job.id for job in scheduler.get_jobs() if job.id.startswith(TASK_JOB_PREFIX)
    }

    queued = TaskHistory.query.filter_by(status='queued').order_by(TaskHistory.id).all()
    for task in queued:
        job_id = f"{TASK_JOB_PREFIX}{task.id}"
        if job_id in scheduled_job_ids:
            scheduled_job_ids.remove(job_id)
        else:
            _enqueue(task)
            logger.info(f"Requeued task {task.id}: {task.name}")

    for leftover_id in scheduled_job_ids:
        try:
            scheduler.remove_job(leftover_id)
            logger.info(f"Removed orphaned task job: {leftover_id}")
        except Exception as e:
            logger.warning(f"Failed to remove orphaned task job {leftover_id}: {e}")


def _execute_task_wrapper(task_id: int):
    """
    Wrapper function for executing tasks in scheduler context.

    This function ensures the database session is properly managed when
    tasks are executed by APScheduler.

    Args:
        task_id: TaskHistory ID to execute
    """
    global flask_app

    # Execute within app context using stored Flask app reference
    with flask_app.app_context():
        try:
            logger.info(f"Scheduler executing task ID: {task_id}")
            task = execute_task(task_id)
            logger.info(f"Task {task_id} finished with status: {task.status}")
        except Exception as e:
            logger.exception(f"Scheduler task {task_id} failed: {e}")


def get_scheduled_jobs() -> list:
    """
    Get list of all pending jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

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
    """
    Check if scheduler is running.

    Falls back to the job store database when the scheduler lives in
    another process (Flask reloader parent, non-scheduler worker).

    Returns:
        True if scheduler is running or has pending jobs, False otherwise
    """
    global scheduler

    if scheduler is not None and scheduler.running:
        return True

    return _count_jobs_in_database() > 0


def get_scheduler_diagnostics() -> dict:
    """
    Get detailed scheduler diagnostics for troubleshooting.

    Returns:
        Dict with scheduler state, jobs, and health info
    """
    global scheduler

    jobs_in_db = _count_jobs_in_database()

    if scheduler is None:
        return {
            'initialized': False,
            'running': jobs_in_db > 0,
            'state': 'NOT_INITIALIZED',
            'jobs_in_database': jobs_in_db,
            'note': 'Scheduler object not available in this process'
        }

    try:
        jobs = scheduler.get_jobs()
        job_info = []
        for job in jobs:
            job_info.append({
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger),
                'pending': job.pending
            })

        return {
            'initialized': True,
            'running': scheduler.running,
            'state': str(scheduler.state),
            'job_count': len(jobs),
            'jobs_in_database': jobs_in_db,
            'jobs': job_info
        }
    except Exception as e:
        return {
            'initialized': True,
            'running': jobs_in_db > 0,
            'state': 'ERROR',
            'jobs_in_database': jobs_in_db,
            'error': str(e)
        }
