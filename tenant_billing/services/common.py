"""Shared service utilities: UUID coercion, timezone normalisation, day math."""
from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from typing import Any

from tenant_billing.errors import NotFoundError

SECONDS_PER_DAY = 24 * 60 * 60


def coerce_uuid(value: Any) -> uuid.UUID | None:
    """Convert a string or UUID to UUID, or return None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def require_uuid(value: Any, label: str = "Record") -> uuid.UUID:
    """Convert to UUID, raising NotFoundError for malformed identifiers."""
    try:
        result = coerce_uuid(value)
    except ValueError as exc:
        raise NotFoundError(f"{label} not found") from exc
    if result is None:
        raise NotFoundError(f"{label} not found")
    return result


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime | None) -> datetime | None:
    """Ensure datetime is timezone-aware (UTC). SQLite doesn't preserve tz info."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def days_until(moment: datetime | None, now: datetime) -> int:
    """Whole days left until ``moment``, rounded up and never negative."""
    if moment is None:
        return 0
    remaining = (as_utc(moment) - now).total_seconds()
    return max(0, math.ceil(remaining / SECONDS_PER_DAY))
