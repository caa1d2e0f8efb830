"""
Gunicorn Configuration

Production settings for the AI jury API (ai_jury.main:app).

Live progress and the per-session execution lock live in worker memory, so
the default is a single worker. With more workers, route execute/progress
calls for one session to the same worker.
"""
import os

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get("GUNICORN_WORKERS", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
# A layer over a large pool with repository checks can run for minutes
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "600"))
graceful_timeout = 60
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "ai-jury"

# Server mechanics
daemon = False
pidfile = "/tmp/ai-jury-gunicorn.pid"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info(f"AI jury API ready with {workers} worker(s)")


def worker_int(worker):
    worker.log.info(f"Worker {worker.pid} interrupted; running layers are not resumed")
