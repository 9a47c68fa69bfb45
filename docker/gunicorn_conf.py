# Gunicorn configuration for lnbackup
# Only one worker may own the task queue, otherwise tasks would run concurrently

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:5000')
# Tasks are submitted in the queue owner's process, so one worker serves the API
workers = int(os.environ.get('GUNICORN_WORKERS', 1))
threads = int(os.environ.get('GUNICORN_THREADS', 4))


def post_worker_init(worker):
    """
    Pick the task queue owner among the workers.

    The first worker (worker.age == 0) sets SCHEDULER_WORKER=true and runs
    APScheduler; the rest only serve HTTP and write queued tasks to the
    shared job store.

    Args:
        worker: Gunicorn worker instance
    """
    owns_queue = worker.age == 0
    os.environ['SCHEDULER_WORKER'] = 'true' if owns_queue else 'false'

    role = 'task queue owner' if owns_queue else 'HTTP only'
    logger.info(f"Worker PID {worker.pid} (age={worker.age}): {role}")
