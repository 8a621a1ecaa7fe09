"""Plan price table. Amounts are minor currency units (cents)."""
import os

from tenant_billing.models.billing import BillingCycle, SubscriptionPlan

_DEFAULT_PRICES: dict[str, dict[str, dict[str, int]]] = {
    "basic": {
        "monthly": {"usd": 2900, "zwl": 870000},
        "yearly": {"usd": 29000, "zwl": 8700000},
    },
    "pro": {
        "monthly": {"usd": 7900, "zwl": 2370000},
        "yearly": {"usd": 79000, "zwl": 23700000},
    },
    "enterprise": {
        "monthly": {"usd": 19900, "zwl": 5970000},
        "yearly": {"usd": 199000, "zwl": 59700000},
    },
}


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def get_subscription_pricing() -> dict[str, dict[str, dict[str, int]]]:
    """Return plan -> cycle -> currency -> amount, honouring PRICE_* overrides."""
    pricing: dict[str, dict[str, dict[str, int]]] = {}
    for plan, cycles in _DEFAULT_PRICES.items():
        pricing[plan] = {}
        for cycle, currencies in cycles.items():
            pricing[plan][cycle] = {}
            for currency, default in currencies.items():
                env_key = f"PRICE_{plan}_{cycle}_{currency}".upper()
                override = _env_int(env_key)
                pricing[plan][cycle][currency] = (
                    override if override is not None else default
                )
    return pricing


def plan_amount(
    plan: SubscriptionPlan | str,
    billing_cycle: BillingCycle | str = BillingCycle.monthly,
    currency: str = "USD",
) -> int:
    pricing = get_subscription_pricing()
    plan_key = str(getattr(plan, "value", plan)).lower()
    cycle_key = str(getattr(billing_cycle, "value", billing_cycle)).lower()
    cycles = pricing.get(plan_key) or pricing["basic"]
    amounts = cycles.get(cycle_key) or cycles["monthly"]
    return amounts.get(currency.lower(), amounts["usd"])
