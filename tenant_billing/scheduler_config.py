"""Celery broker and beat configuration, resolved from the environment."""
import logging
import os
from datetime import timedelta

from tenant_billing.config import settings

logger = logging.getLogger(__name__)

SWEEP_TASK_NAME = "tenant_billing.tasks.run_reconciliation_sweep"


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None


def get_celery_config() -> dict:
    broker = (
        _env_value("CELERY_BROKER_URL")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/0"
    )
    backend = (
        _env_value("CELERY_RESULT_BACKEND")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/1"
    )
    timezone = _env_value("CELERY_TIMEZONE") or "UTC"
    beat_max_loop_interval = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL") or 5
    return {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": timezone,
        "beat_max_loop_interval": beat_max_loop_interval,
    }


def build_beat_schedule() -> dict:
    interval_seconds = max(settings.sweep_interval_seconds, 1)
    return {
        "reconciliation_sweep": {
            "task": SWEEP_TASK_NAME,
            "schedule": timedelta(seconds=interval_seconds),
            "args": [],
            "kwargs": {},
        }
    }
