"""Gunicorn settings for the Context Resolution service.

    gunicorn main:app -c deploy/gunicorn.conf.py

Resolutions are I/O bound (fan-out GETs to the project backend), so a few
uvicorn workers with an event loop each are enough.  Every worker owns its
result cache, resolution slots and backend circuit breaker; none of that is
shared across processes.  Override any value through the environment.
"""

import multiprocessing
import os


def _env_int(name, default):
    return int(os.getenv(name, default))


bind = os.getenv("BIND", "0.0.0.0:5000")
worker_class = "uvicorn.workers.UvicornWorker"
workers = _env_int("WORKERS", min(multiprocessing.cpu_count(), 4))

# Three backend stages, each up to three attempts of BACKEND_TIMEOUT (15s)
timeout = _env_int("WORKER_TIMEOUT", 150)
graceful_timeout = 30
keepalive = 5

# Recycling also clears the worker's result cache
max_requests = _env_int("MAX_REQUESTS", 5000)
max_requests_jitter = max_requests // 10

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)sμs rid=%({x-request-id}o)s'

proc_name = "context-resolution-engine"


def on_starting(server):
    server.log.info(
        "Context Resolution Engine: %d worker(s) on %s, timeout %ds",
        workers, bind, timeout,
    )


def worker_exit(server, worker):
    server.log.info("Worker %s exited", worker.pid)
