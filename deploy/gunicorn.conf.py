"""
Gunicorn configuration for the InternHub API.

    gunicorn -c deploy/gunicorn.conf.py internhub.main:app

Workers share nothing but the database; capacity claims are conditional
UPDATEs, so any worker count is safe.
"""
import os
import multiprocessing

wsgi_app = "internhub.main:app"

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
keepalive = 5

# Logging
accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'

proc_name = "internhub"

daemon = False

# Report uploads are capped at 10MB by the app; request line/header limits stay strict
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info(f"InternHub ready with {workers} worker(s) on {bind}")
