"""
Production Server Configuration

Run the sync engine API with Uvicorn workers under Gunicorn.

Each worker builds its own sync engine. Keep WORKERS=1, or run extra
workers with SYNC_SCHEDULER_ENABLED=false so only one process schedules
fleet syncs.
"""

import os

# Server socket
bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5
# Must exceed SYNC_SHUTDOWN_GRACE_SECONDS so in-flight runs can drain
graceful_timeout = int(os.getenv("GRACEFUL_TIMEOUT", 45))

# Process naming
proc_name = "storesync-api"

# Server mechanics
daemon = False
pidfile = "/tmp/storesync.pid"

# Logging
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'


def post_fork(server, worker):
    """Called after a worker has been forked."""
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def worker_int(worker):
    """Called when worker receives INT or QUIT signal."""
    worker.log.info("Worker interrupted, draining sync runs (pid: %s)", worker.pid)
