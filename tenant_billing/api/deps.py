from fastapi import Depends

from tenant_billing.db import LedgerStore
from tenant_billing.services.auth_dependencies import get_store
from tenant_billing.services.billing_engine import BillingEngine
from tenant_billing.services.payment_gateway import PaystackGateway, paystack_gateway


def get_gateway() -> PaystackGateway:
    return paystack_gateway


def get_billing_engine(
    store: LedgerStore = Depends(get_store),
    gateway: PaystackGateway = Depends(get_gateway),
) -> BillingEngine:
    return BillingEngine(store, gateway=gateway)
