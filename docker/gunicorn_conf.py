# Gunicorn configuration for Archivist
# The execution gate and scheduler live in one process; HTTP concurrency comes from threads

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('BIND', '0.0.0.0:5000')
workers = 1
threads = int(os.environ.get('GUNICORN_THREADS', 4))
wsgi_app = 'archivist:create_app()'


def post_fork(server, worker):
    """
    Called in the worker process right after it is forked, before the app is loaded.

    Marks the worker as the scheduler owner so create_app() starts APScheduler
    and the execution gate listener there. A worker respawned after a crash
    takes over the same role.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance
    """
    os.environ['SCHEDULER_WORKER'] = 'true'
    logger.info(f"Worker PID {worker.pid} (age={worker.age}): Designated as SCHEDULER OWNER")
