"""Seed a tenant with a trial subscription, or run one reconciliation sweep."""
import argparse

from dotenv import load_dotenv

from tenant_billing.config import settings
from tenant_billing.db import LedgerStore
from tenant_billing.errors import InvalidStateError
from tenant_billing.schemas.billing import TenantSignup
from tenant_billing.services.billing_engine import BillingEngine
from tenant_billing.services.reconciliation import run_reconciliation_sweep
from tenant_billing.services.tenants import tenants


def parse_args():
    parser = argparse.ArgumentParser(description="Seed tenant billing data.")
    parser.add_argument("--name", default="Demo Tenant", help="Tenant display name.")
    parser.add_argument("--slug", default="demo", help="Unique tenant slug.")
    parser.add_argument("--email", help="Billing email for gateway checkouts.")
    parser.add_argument(
        "--plan", default="basic", choices=["basic", "pro", "enterprise"]
    )
    parser.add_argument(
        "--sweep", action="store_true", help="Run a reconciliation sweep afterwards."
    )
    return parser.parse_args()


def main() -> None:
    load_dotenv()
    args = parse_args()
    store = LedgerStore(settings.database_url).open()
    try:
        engine = BillingEngine(store)
        payload = TenantSignup(
            name=args.name, slug=args.slug, billing_email=args.email, plan=args.plan
        )
        try:
            tenant, subscription = tenants.signup(engine, payload)
            print(
                f"Created tenant {tenant.slug} ({tenant.id}), "
                f"trial ends {subscription.current_period_end:%Y-%m-%d}"
            )
        except InvalidStateError as exc:
            print(f"Skipped: {exc.message}")
        if args.sweep:
            print(run_reconciliation_sweep(engine).as_dict())
    finally:
        store.close()


if __name__ == "__main__":
    main()
