"""
Gunicorn configuration for the Cadence API.

    gunicorn cadence.main:app -c gunicorn.conf.py

Env vars that override defaults:
  PORT       — TCP port to bind (Railway / Render set this automatically)
  WORKERS    — number of worker processes (default: 2)
  LOG_LEVEL  — shared with the application logger (default: info)

The reactivation sweep is not run by the web workers; schedule
`python -m cadence.jobs sweep` separately.
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Period transitions are short DB-bound requests; 2 workers fit a 512 MB container.
workers = int(os.environ.get("WORKERS", "2"))

worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

timeout = 60

# stdout only, same stream as cadence.core.logging
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30
