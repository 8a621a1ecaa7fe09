"""Gunicorn configuration for the tenant billing API.

Usage:
    gunicorn -c gunicorn.conf.py tenant_billing.main:app

The reconciliation sweep does not run here; start a Celery worker with beat
(``celery -A tenant_billing.celery_app worker -B``) or call the cron endpoint.
"""
from __future__ import annotations

import multiprocessing
import os

# ── Server socket ────────────────────────────────────────
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8001")

# ── Worker processes ─────────────────────────────────────
workers = int(os.getenv("GUNICORN_WORKERS", str(multiprocessing.cpu_count() * 2 + 1)))
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# ── Timeouts ─────────────────────────────────────────────
# Checkout initialisation waits on Paystack for up to 30s.
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

# ── Request limits ───────────────────────────────────────
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "50"))

# Each worker opens its own ledger store in the app lifespan, so preloading
# must stay off unless the store is opened after fork.
preload_app = os.getenv("GUNICORN_PRELOAD", "false").lower() == "true"

# ── Logging ──────────────────────────────────────────────
# Application logs are JSON on stderr; keep gunicorn's access log off by default.
accesslog = os.getenv("GUNICORN_ACCESSLOG") or None
errorlog = os.getenv("GUNICORN_ERRORLOG", "-")
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")

proc_name = "tenant_billing"
