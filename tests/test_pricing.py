"""Tests for the plan price table."""

import pytest

from tenant_billing.models.billing import BillingCycle, SubscriptionPlan
from tenant_billing.services.pricing import get_subscription_pricing, plan_amount


def test_default_pricing_table():
    pricing = get_subscription_pricing()
    assert set(pricing) == {"basic", "pro", "enterprise"}
    assert pricing["pro"]["yearly"]["usd"] == 79000


def test_env_override(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PRICE_BASIC_MONTHLY_USD", "3500")
    assert get_subscription_pricing()["basic"]["monthly"]["usd"] == 3500
    assert plan_amount(SubscriptionPlan.basic) == 3500


def test_invalid_override_is_ignored(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PRICE_PRO_MONTHLY_USD", "lots")
    assert plan_amount("pro") == 7900


def test_plan_amount_by_cycle_and_currency():
    assert plan_amount("enterprise", BillingCycle.yearly, "USD") == 199000
    assert plan_amount("basic", "monthly", "ZWL") == 870000


def test_plan_amount_unknown_currency_falls_back_to_usd():
    assert plan_amount("basic", "monthly", "EUR") == 2900
