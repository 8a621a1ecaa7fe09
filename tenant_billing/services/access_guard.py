"""Subscription access guard.

``evaluate_access`` is the single decision function: given the tenant's
subscription (or None) and the level an operation needs, it returns an
``AccessResult``. ``AccessGuard`` loads the subscription and fails closed when
the store cannot be read. ``require_access`` is the FastAPI dependency that
every state-mutating route outside billing attaches.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Literal

from fastapi import Depends, Response
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from tenant_billing.config import settings
from tenant_billing.db import LedgerStore
from tenant_billing.errors import AccessDeniedError, BillingError
from tenant_billing.models.billing import Subscription, SubscriptionStatus
from tenant_billing.services.auth_dependencies import (
    Principal,
    get_store,
    require_principal,
)
from tenant_billing.services.common import coerce_uuid, days_until, utcnow
from tenant_billing.services.lifecycle import TRIAL_WARNING_DAYS

logger = logging.getLogger(__name__)

RequiredLevel = Literal["read", "write"]


class AccessLevel(str, enum.Enum):
    full = "full"
    grace = "grace"
    read_only = "read_only"
    blocked = "blocked"


# Status -> level. Statuses not listed fall through to the inactive rule.
STATUS_ACCESS_LEVELS: dict[SubscriptionStatus, AccessLevel] = {
    SubscriptionStatus.suspended: AccessLevel.blocked,
    SubscriptionStatus.read_only: AccessLevel.read_only,
    SubscriptionStatus.grace: AccessLevel.grace,
    SubscriptionStatus.active: AccessLevel.full,
    SubscriptionStatus.trial: AccessLevel.full,
}

# Names used by older billing rows and external systems.
LEGACY_STATUS_LEVELS: dict[str, AccessLevel] = {
    "EXPIRED": AccessLevel.read_only,
    "PAST_DUE": AccessLevel.grace,
}


@dataclass(frozen=True)
class AccessResult:
    allowed: bool
    level: AccessLevel
    message: str | None = None
    subscription: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        return data


def _level_for(status: SubscriptionStatus | str | None) -> AccessLevel | None:
    if isinstance(status, SubscriptionStatus):
        return STATUS_ACCESS_LEVELS.get(status)
    if status is None:
        return None
    return LEGACY_STATUS_LEVELS.get(str(status).upper())


def subscription_snapshot(subscription: Subscription, now: datetime) -> dict[str, Any]:
    status = subscription.status
    return {
        "status": getattr(status, "value", status),
        "plan": getattr(subscription.plan, "value", subscription.plan),
        "current_period_end": subscription.current_period_end,
        "grace_period_end": subscription.grace_period_end,
        "days_remaining": days_until(subscription.current_period_end, now),
    }


def evaluate_access(
    subscription: Subscription | None,
    required_level: RequiredLevel,
    now: datetime,
) -> AccessResult:
    if subscription is None:
        return AccessResult(
            allowed=False,
            level=AccessLevel.blocked,
            message="No active subscription found. Please subscribe to continue.",
        )

    snapshot = subscription_snapshot(subscription, now)
    level = _level_for(subscription.status)

    if level is AccessLevel.blocked:
        return AccessResult(
            allowed=False,
            level=level,
            message="Your account has been suspended. Please contact support.",
            subscription=snapshot,
        )

    if level is AccessLevel.read_only:
        if required_level == "write":
            return AccessResult(
                allowed=False,
                level=level,
                message=(
                    "Your subscription has expired. You can view data but cannot "
                    "make changes. Please renew to continue."
                ),
                subscription=snapshot,
            )
        return AccessResult(
            allowed=True,
            level=level,
            message="Your subscription has expired. Please renew to unlock full access.",
            subscription=snapshot,
        )

    if level is AccessLevel.grace:
        grace_days = days_until(subscription.grace_period_end, now)
        return AccessResult(
            allowed=True,
            level=level,
            message=(
                f"Payment overdue. You have {grace_days} days remaining before "
                "access is restricted."
            ),
            subscription=snapshot,
        )

    if level is AccessLevel.full:
        message = None
        if (
            subscription.status == SubscriptionStatus.trial
            and snapshot["days_remaining"] <= TRIAL_WARNING_DAYS
        ):
            message = (
                f"Your trial ends in {snapshot['days_remaining']} days. "
                "Subscribe now to keep access."
            )
        return AccessResult(
            allowed=True, level=level, message=message, subscription=snapshot
        )

    return AccessResult(
        allowed=required_level == "read",
        level=AccessLevel.read_only,
        message="Your subscription is inactive. Please renew to continue.",
        subscription=snapshot,
    )


class AccessGuard:
    def __init__(
        self,
        store: LedgerStore,
        clock: Callable[[], datetime] = utcnow,
        fail_open_reads: bool | None = None,
    ) -> None:
        self.store = store
        self._clock = clock
        self.fail_open_reads = (
            settings.access_fail_open_reads
            if fail_open_reads is None
            else fail_open_reads
        )

    def check_access(
        self, tenant_id: Any, required_level: RequiredLevel = "write"
    ) -> AccessResult:
        try:
            tenant_uuid = coerce_uuid(tenant_id)
        except ValueError:
            return evaluate_access(None, required_level, self._clock())
        try:
            with self.store.session() as db:
                subscription = db.scalar(
                    select(Subscription).where(Subscription.tenant_id == tenant_uuid)
                )
                return evaluate_access(subscription, required_level, self._clock())
        except (BillingError, SQLAlchemyError):
            logger.exception(
                "Subscription access check failed",
                extra={"tenant_id": str(tenant_id)},
            )
            return self._unavailable(required_level)

    def _unavailable(self, required_level: RequiredLevel) -> AccessResult:
        if required_level == "read" and self.fail_open_reads:
            return AccessResult(
                allowed=True,
                level=AccessLevel.read_only,
                message="Subscription status could not be verified.",
            )
        return AccessResult(
            allowed=False,
            level=AccessLevel.blocked,
            message="Subscription status could not be verified. Please try again.",
        )

    def client_status(self, tenant_id: Any) -> dict[str, Any]:
        """Banner flags for UIs, derived from a read check."""
        access = self.check_access(tenant_id, "read")
        return {
            "level": access.level.value,
            "message": access.message,
            "show_warning_banner": access.level is AccessLevel.grace,
            "show_upgrade_prompt": access.level is AccessLevel.read_only,
            "is_blocked": access.level is AccessLevel.blocked,
            "subscription": access.subscription,
        }


def get_access_guard(store: LedgerStore = Depends(get_store)) -> AccessGuard:
    return AccessGuard(store)


def require_access(required_level: RequiredLevel = "write"):
    """Route dependency that enforces subscription access for the caller's tenant."""

    def _require_access(
        response: Response,
        principal: Principal = Depends(require_principal),
        guard: AccessGuard = Depends(get_access_guard),
    ) -> AccessResult:
        if principal.is_super_admin:
            return AccessResult(allowed=True, level=AccessLevel.full)
        if not principal.tenant_id:
            raise AccessDeniedError(
                "No tenant associated with user", AccessLevel.blocked.value
            )
        access = guard.check_access(principal.tenant_id, required_level)
        if not access.allowed:
            logger.info(
                "Subscription access denied (%s) for %s",
                access.level.value,
                required_level,
                extra={"tenant_id": principal.tenant_id, "actor_id": principal.user_id},
            )
            raise AccessDeniedError(
                access.message or "Subscription required",
                access.level.value,
                access.subscription,
            )
        if access.level is AccessLevel.grace and access.message:
            response.headers["X-Subscription-Warning"] = access.message
            response.headers["X-Subscription-Level"] = access.level.value
        return access

    return _require_access
