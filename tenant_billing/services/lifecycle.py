"""Subscription lifecycle: the transition table and the only status writer.

Every status change in the system goes through ``apply_transition``, which
consults ``TRANSITIONS`` via ``try_transition``. A transition whose source
state does not match is a no-op, which is what makes repeated webhooks and
overlapping sweep ticks safe.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from tenant_billing.metrics import SUBSCRIPTION_TRANSITIONS
from tenant_billing.models.billing import (
    BillingCycle,
    Subscription,
    SubscriptionStatus,
    Tenant,
)

logger = logging.getLogger(__name__)

TRIAL_PERIOD_DAYS = 14
GRACE_PERIOD_DAYS = 7
INVOICE_DUE_DAYS = 7
TRIAL_WARNING_DAYS = 3

BILLING_CYCLE_DAYS = {
    BillingCycle.monthly: 30,
    BillingCycle.yearly: 365,
}


class Trigger(str, enum.Enum):
    signup = "signup"
    payment_settled = "payment_settled"
    period_lapsed = "period_lapsed"
    grace_expired = "grace_expired"
    admin_suspend = "admin_suspend"


_ANY = frozenset(SubscriptionStatus)

TRANSITIONS: dict[
    Trigger, tuple[frozenset[SubscriptionStatus | None], SubscriptionStatus]
] = {
    Trigger.signup: (frozenset({None}), SubscriptionStatus.trial),
    # Payment is also the only way out of SUSPENDED.
    Trigger.payment_settled: (_ANY, SubscriptionStatus.active),
    Trigger.period_lapsed: (
        frozenset({SubscriptionStatus.active, SubscriptionStatus.trial}),
        SubscriptionStatus.grace,
    ),
    Trigger.grace_expired: (
        frozenset({SubscriptionStatus.grace}),
        SubscriptionStatus.read_only,
    ),
    Trigger.admin_suspend: (_ANY, SubscriptionStatus.suspended),
}


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime
    grace_end: datetime


def cycle_length(billing_cycle: BillingCycle | str | None) -> timedelta:
    try:
        cycle = BillingCycle(billing_cycle) if billing_cycle else BillingCycle.monthly
    except ValueError:
        cycle = BillingCycle.monthly
    return timedelta(days=BILLING_CYCLE_DAYS[cycle])


def compute_period(start: datetime, billing_cycle: BillingCycle | str | None) -> Period:
    end = start + cycle_length(billing_cycle)
    return Period(start=start, end=end, grace_end=end + timedelta(days=GRACE_PERIOD_DAYS))


def trial_period(start: datetime) -> Period:
    end = start + timedelta(days=TRIAL_PERIOD_DAYS)
    return Period(start=start, end=end, grace_end=end + timedelta(days=GRACE_PERIOD_DAYS))


def try_transition(
    current: SubscriptionStatus | None,
    expected: frozenset[SubscriptionStatus | None],
    target: SubscriptionStatus,
) -> SubscriptionStatus | None:
    """Return ``target`` when ``current`` is an allowed source, else None."""
    if current not in expected:
        return None
    return target


def next_status(
    trigger: Trigger, current: SubscriptionStatus | None
) -> SubscriptionStatus | None:
    expected, target = TRANSITIONS[trigger]
    return try_transition(current, expected, target)


def apply_transition(
    subscription: Subscription, tenant: Tenant, trigger: Trigger
) -> bool:
    """Move subscription and tenant together. Returns False when not applicable."""
    source = subscription.status
    target = next_status(trigger, source)
    if target is None:
        logger.info(
            "Skipping %s for subscription %s in status %s",
            trigger.value,
            subscription.id,
            source.value if source else None,
        )
        return False
    subscription.status = target
    tenant.status = target
    SUBSCRIPTION_TRANSITIONS.labels(
        source.value if source else "none", target.value
    ).inc()
    return True
