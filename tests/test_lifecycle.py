"""Tests for the subscription transition table."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from tenant_billing.models.billing import BillingCycle, SubscriptionStatus
from tenant_billing.services import lifecycle
from tenant_billing.services.lifecycle import Trigger

ALL_STATUSES = list(SubscriptionStatus)


def _pair(status):
    subscription = SimpleNamespace(id="sub-1", status=status)
    tenant = SimpleNamespace(id="tenant-1", status=status)
    return subscription, tenant


def test_try_transition_returns_target_for_expected_source():
    expected = frozenset({SubscriptionStatus.grace})
    assert (
        lifecycle.try_transition(
            SubscriptionStatus.grace, expected, SubscriptionStatus.read_only
        )
        == SubscriptionStatus.read_only
    )


def test_try_transition_returns_none_for_unexpected_source():
    expected = frozenset({SubscriptionStatus.grace})
    assert (
        lifecycle.try_transition(
            SubscriptionStatus.active, expected, SubscriptionStatus.read_only
        )
        is None
    )


def test_signup_only_from_no_status():
    assert lifecycle.next_status(Trigger.signup, None) == SubscriptionStatus.trial
    for status in ALL_STATUSES:
        assert lifecycle.next_status(Trigger.signup, status) is None


@pytest.mark.parametrize("status", ALL_STATUSES)
def test_payment_settles_to_active_from_every_status(status):
    assert (
        lifecycle.next_status(Trigger.payment_settled, status)
        == SubscriptionStatus.active
    )


@pytest.mark.parametrize("status", ALL_STATUSES)
def test_admin_suspend_from_every_status(status):
    assert (
        lifecycle.next_status(Trigger.admin_suspend, status)
        == SubscriptionStatus.suspended
    )


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (SubscriptionStatus.active, SubscriptionStatus.grace),
        (SubscriptionStatus.trial, SubscriptionStatus.grace),
        (SubscriptionStatus.grace, None),
        (SubscriptionStatus.read_only, None),
        (SubscriptionStatus.suspended, None),
        (SubscriptionStatus.cancelled, None),
    ],
)
def test_period_lapse_sources(status, expected):
    assert lifecycle.next_status(Trigger.period_lapsed, status) == expected


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (SubscriptionStatus.grace, SubscriptionStatus.read_only),
        (SubscriptionStatus.active, None),
        (SubscriptionStatus.trial, None),
        (SubscriptionStatus.suspended, None),
    ],
)
def test_grace_expiry_sources(status, expected):
    assert lifecycle.next_status(Trigger.grace_expired, status) == expected


def test_apply_transition_updates_subscription_and_tenant_together():
    subscription, tenant = _pair(SubscriptionStatus.active)
    assert lifecycle.apply_transition(subscription, tenant, Trigger.period_lapsed)
    assert subscription.status == SubscriptionStatus.grace
    assert tenant.status == SubscriptionStatus.grace


def test_apply_transition_is_noop_when_source_does_not_match():
    subscription, tenant = _pair(SubscriptionStatus.suspended)
    assert not lifecycle.apply_transition(subscription, tenant, Trigger.period_lapsed)
    assert subscription.status == SubscriptionStatus.suspended
    assert tenant.status == SubscriptionStatus.suspended


def test_suspended_never_returns_to_grace_or_read_only():
    subscription, tenant = _pair(SubscriptionStatus.suspended)
    for trigger in (Trigger.period_lapsed, Trigger.grace_expired, Trigger.signup):
        lifecycle.apply_transition(subscription, tenant, trigger)
    assert subscription.status == SubscriptionStatus.suspended


def test_compute_period_monthly():
    start = datetime(2026, 1, 1, tzinfo=UTC)
    period = lifecycle.compute_period(start, BillingCycle.monthly)
    assert period.start == start
    assert period.end == start + timedelta(days=30)
    assert period.grace_end == period.end + timedelta(days=7)


def test_compute_period_yearly():
    start = datetime(2026, 1, 1, tzinfo=UTC)
    period = lifecycle.compute_period(start, BillingCycle.yearly)
    assert period.end == start + timedelta(days=365)


def test_compute_period_unknown_cycle_defaults_to_monthly():
    start = datetime(2026, 1, 1, tzinfo=UTC)
    assert lifecycle.compute_period(start, "weekly").end == start + timedelta(days=30)


def test_trial_period_is_fourteen_days_plus_grace():
    start = datetime(2026, 1, 1, tzinfo=UTC)
    period = lifecycle.trial_period(start)
    assert period.end == start + timedelta(days=14)
    assert period.grace_end == start + timedelta(days=21)
