"""Tests for the reconciliation sweep."""

from unittest.mock import patch

from tenant_billing.models.billing import (
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    Tenant,
)
from tenant_billing.services.reconciliation import (
    ReconciliationSweep,
    run_reconciliation_sweep,
)


def _status(store, subscription_id):
    with store.session() as db:
        return db.get(Subscription, subscription_id).status


def test_sweep_with_nothing_due_reports_zeros(billing, tenant):
    result = run_reconciliation_sweep(billing)
    assert result.as_dict() == {
        "overdue_invoices": 0,
        "to_grace": 0,
        "to_read_only": 0,
        "errors": [],
    }


def test_lapsed_trial_moves_to_grace_then_read_only(billing, store, make_tenant, clock):
    tenant, subscription = make_tenant(slug="lapse")

    clock.advance(days=15)
    first = run_reconciliation_sweep(billing)
    assert first.to_grace == 1
    assert first.to_read_only == 0
    assert _status(store, subscription.id) == SubscriptionStatus.grace

    clock.advance(days=7)
    second = run_reconciliation_sweep(billing)
    assert second.to_grace == 0
    assert second.to_read_only == 1
    assert _status(store, subscription.id) == SubscriptionStatus.read_only
    with store.session() as db:
        assert db.get(Tenant, tenant.id).status == SubscriptionStatus.read_only


def test_sweep_is_idempotent(billing, make_tenant, clock):
    make_tenant(slug="twice")
    clock.advance(days=15)
    assert run_reconciliation_sweep(billing).to_grace == 1

    again = run_reconciliation_sweep(billing)
    assert again.to_grace == 0
    assert again.to_read_only == 0
    assert again.overdue_invoices == 0


def test_period_end_exactly_now_is_not_lapsed(billing, store, make_tenant, clock):
    _, subscription = make_tenant(slug="edge")
    clock.advance(days=14)
    assert run_reconciliation_sweep(billing).to_grace == 0
    assert _status(store, subscription.id) == SubscriptionStatus.trial


def test_paid_subscription_is_not_demoted(billing, store, make_tenant, clock):
    tenant, subscription = make_tenant(slug="payer")
    clock.advance(days=13)
    payment = billing.create_invoice(tenant.id, 2900)
    billing.process_successful_payment(payment.id)

    clock.advance(days=5)
    result = run_reconciliation_sweep(billing)

    assert result.to_grace == 0
    assert _status(store, subscription.id) == SubscriptionStatus.active


def test_suspended_subscription_is_left_alone(billing, store, make_tenant, clock):
    _, subscription = make_tenant(slug="frozen")
    billing.suspend_subscription(subscription.id, "fraud")

    clock.advance(days=30)
    result = run_reconciliation_sweep(billing)

    assert result.to_grace == 0
    assert result.to_read_only == 0
    assert _status(store, subscription.id) == SubscriptionStatus.suspended


def test_overdue_invoices_are_marked(billing, store, tenant, clock):
    payment = billing.create_invoice(tenant.id, 2900)
    paid = billing.create_invoice(tenant.id, 2900)
    billing.process_successful_payment(paid.id)

    clock.advance(days=8)
    result = run_reconciliation_sweep(billing)

    assert result.overdue_invoices == 1
    with store.session() as db:
        assert db.get(Payment, payment.id).status == PaymentStatus.overdue
        assert db.get(Payment, paid.id).status == PaymentStatus.success


def test_one_failing_subscription_does_not_stop_the_rest(billing, store, make_tenant, clock):
    _, bad = make_tenant(slug="bad")
    _, good = make_tenant(slug="good")
    clock.advance(days=15)

    original = billing.transition_to_grace

    def flaky(subscription_id, now=None):
        if str(subscription_id) == str(bad.id):
            raise RuntimeError("row locked")
        return original(subscription_id, now)

    with patch.object(billing, "transition_to_grace", side_effect=flaky):
        result = ReconciliationSweep(billing).run()

    assert result.to_grace == 1
    assert len(result.errors) == 1
    assert result.errors[0].phase == "to_grace"
    assert result.errors[0].subscription_id == str(bad.id)
    assert _status(store, good.id) == SubscriptionStatus.grace
    assert _status(store, bad.id) == SubscriptionStatus.trial


def test_transition_to_grace_rechecks_period_under_lock(billing, store, make_tenant, clock):
    tenant, subscription = make_tenant(slug="race")
    clock.advance(days=15)
    candidates = billing.find_lapsed_subscriptions()
    assert str(subscription.id) in candidates

    # A payment lands between candidate selection and the transition.
    payment = billing.create_invoice(tenant.id, 2900)
    billing.process_successful_payment(payment.id)

    assert billing.transition_to_grace(subscription.id) is False
    assert _status(store, subscription.id) == SubscriptionStatus.active


def test_grace_window_is_seven_days_after_period_end(billing, store, make_tenant, clock):
    _, subscription = make_tenant(slug="window")
    clock.advance(days=15)
    run_reconciliation_sweep(billing)

    clock.advance(days=5)
    assert run_reconciliation_sweep(billing).to_read_only == 0
    assert _status(store, subscription.id) == SubscriptionStatus.grace

    clock.advance(days=2)
    assert run_reconciliation_sweep(billing).to_read_only == 1
