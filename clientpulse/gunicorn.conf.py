"""
Gunicorn configuration file for ClientPulse
All settings can be overridden via environment variables

Usage:
    gunicorn -c clientpulse/gunicorn.conf.py 'clientpulse.app:create_app()'
"""

import os
import multiprocessing

# Server Socket
bind = os.getenv('GUNICORN_BIND', '127.0.0.1:5000')

# Worker Processes
cpu_count = multiprocessing.cpu_count()
default_workers = max(2, cpu_count * 2)
workers = int(os.getenv('GUNICORN_WORKERS', default_workers))

# Thread-based workers; the MySQL pool and the Redis client are thread-safe
worker_class = os.getenv('GUNICORN_WORKER_CLASS', 'gthread')
threads = int(os.getenv('GUNICORN_THREADS', '4'))

# A synchronous full recompute from the API can take a while on large fleets
timeout = int(os.getenv('GUNICORN_TIMEOUT', '60'))
graceful_timeout = int(os.getenv('GUNICORN_GRACEFUL_TIMEOUT', '30'))
keepalive = int(os.getenv('GUNICORN_KEEPALIVE', '2'))

# Restart workers periodically
max_requests = int(os.getenv('GUNICORN_MAX_REQUESTS', '1000'))
max_requests_jitter = int(os.getenv('GUNICORN_MAX_REQUESTS_JITTER', '50'))

# Each worker opens its own MySQL pool, so don't share state across the fork
preload_app = os.getenv('GUNICORN_PRELOAD', 'false').lower() == 'true'

# Logging
accesslog = os.getenv('GUNICORN_ACCESS_LOG', '-')  # '-' means stdout
errorlog = os.getenv('GUNICORN_ERROR_LOG', '-')
loglevel = os.getenv('GUNICORN_LOG_LEVEL', 'info')
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = 'clientpulse-api'


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    from clientpulse.models import reset_store
    # The parent's store (and its connection pool) must not be reused
    reset_store()
    server.log.info(f"Worker spawned (pid: {worker.pid})")
