from fastapi import APIRouter, Depends, status

from tenant_billing.api.deps import get_billing_engine
from tenant_billing.schemas.billing import (
    AccessStatusRead,
    BankTransferConfirm,
    BankTransferRequestCreate,
    BankTransferRequestRead,
    CheckoutCreate,
    CheckoutRead,
    GatewayVerificationRead,
    InvoiceCreate,
    PaymentRead,
    PendingBankTransferList,
    SettlementRead,
    SubscriptionRead,
    SubscriptionStatusRead,
    SuspendRequest,
)
from tenant_billing.services.access_guard import AccessGuard, get_access_guard
from tenant_billing.services.auth_dependencies import (
    Principal,
    require_principal,
    require_super_admin,
    require_tenant_principal,
)
from tenant_billing.services.billing_engine import BillingEngine
from tenant_billing.services.pricing import get_subscription_pricing

router = APIRouter(prefix="/billing", tags=["billing"])


# ── Status ───────────────────────────────────────────────


@router.get("/status", response_model=SubscriptionStatusRead)
def get_subscription_status(
    principal: Principal = Depends(require_tenant_principal),
    engine: BillingEngine = Depends(get_billing_engine),
):
    overview = engine.get_subscription_status(principal.tenant_id)
    return SubscriptionStatusRead.model_validate(overview)


@router.get("/access", response_model=AccessStatusRead)
def get_access_status(
    principal: Principal = Depends(require_principal),
    guard: AccessGuard = Depends(get_access_guard),
):
    if principal.is_super_admin or not principal.tenant_id:
        return {"level": "full", "message": None, "subscription": None}
    return guard.client_status(principal.tenant_id)


@router.get("/pricing")
def get_pricing() -> dict:
    return get_subscription_pricing()


# ── Invoices ─────────────────────────────────────────────


@router.post(
    "/invoices", response_model=PaymentRead, status_code=status.HTTP_201_CREATED
)
def create_invoice(
    payload: InvoiceCreate,
    principal: Principal = Depends(require_tenant_principal),
    engine: BillingEngine = Depends(get_billing_engine),
):
    return engine.create_invoice(
        principal.tenant_id,
        payload.amount,
        currency=payload.currency,
        method=payload.method,
        description=payload.description,
    )


@router.post("/invoices/{payment_id}/checkout", response_model=CheckoutRead)
def start_checkout(
    payment_id: str,
    payload: CheckoutCreate,
    principal: Principal = Depends(require_tenant_principal),
    engine: BillingEngine = Depends(get_billing_engine),
):
    return engine.start_gateway_checkout(
        principal.tenant_id, payment_id, payload.callback_url
    )


@router.post("/invoices/{payment_id}/verify", response_model=GatewayVerificationRead)
def verify_checkout(
    payment_id: str,
    principal: Principal = Depends(require_tenant_principal),
    engine: BillingEngine = Depends(get_billing_engine),
):
    verification = engine.verify_gateway_payment(principal.tenant_id, payment_id)
    return GatewayVerificationRead.model_validate(verification)


# ── Bank transfers ───────────────────────────────────────


@router.post(
    "/bank-transfers",
    response_model=BankTransferRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def request_bank_transfer(
    payload: BankTransferRequestCreate,
    principal: Principal = Depends(require_tenant_principal),
    engine: BillingEngine = Depends(get_billing_engine),
):
    transfer = engine.create_bank_transfer_request(
        principal.tenant_id, amount=payload.amount, currency=payload.currency
    )
    return BankTransferRequestRead.model_validate(transfer)


@router.get("/bank-transfers/pending", response_model=PendingBankTransferList)
def list_pending_bank_transfers(
    _: Principal = Depends(require_super_admin),
    engine: BillingEngine = Depends(get_billing_engine),
):
    pending = engine.list_pending_bank_transfers()
    return {"pending_transfers": pending, "count": len(pending)}


@router.post("/bank-transfers/{payment_id}/confirm", response_model=SettlementRead)
def confirm_bank_transfer(
    payment_id: str,
    payload: BankTransferConfirm,
    admin: Principal = Depends(require_super_admin),
    engine: BillingEngine = Depends(get_billing_engine),
):
    result = engine.confirm_bank_transfer(
        payment_id, admin.user_id, payload.bank_reference
    )
    if result.already_processed:
        message = "Bank transfer was already confirmed"
    else:
        message = "Bank transfer confirmed successfully"
    return {
        "message": message,
        "payment": result.payment,
        "already_processed": result.already_processed,
    }


# ── Administration ───────────────────────────────────────


@router.post("/subscriptions/{subscription_id}/suspend", response_model=SubscriptionRead)
def suspend_subscription(
    subscription_id: str,
    payload: SuspendRequest,
    _: Principal = Depends(require_super_admin),
    engine: BillingEngine = Depends(get_billing_engine),
):
    return engine.suspend_subscription(subscription_id, payload.reason)
