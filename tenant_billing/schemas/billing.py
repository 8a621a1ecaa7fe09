from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

PlanName = Literal["basic", "pro", "enterprise"]

# ── Tenant ───────────────────────────────────────────────


class TenantSignup(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=2, max_length=80, pattern=r"^[A-Za-z0-9][A-Za-z0-9-]*$")
    billing_email: str | None = Field(default=None, max_length=255)
    plan: PlanName = "basic"


class TenantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    name: str
    slug: str
    billing_email: str | None = None
    status: str | None = None
    trial_ends_at: datetime | None = None
    created_at: datetime


# ── Subscription ─────────────────────────────────────────


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    tenant_id: UUID
    plan: str
    status: str
    amount: int
    currency: str
    billing_cycle: str
    trial_ends_at: datetime | None = None
    current_period_start: datetime
    current_period_end: datetime
    grace_period_end: datetime
    provider_subscription_id: str | None = None
    suspension_reason: str | None = None
    suspended_at: datetime | None = None


class TenantSignupRead(BaseModel):
    tenant: TenantRead
    subscription: SubscriptionRead


class SuspendRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


# ── Payment ──────────────────────────────────────────────


class InvoiceCreate(BaseModel):
    amount: int = Field(gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    method: Literal["paystack", "bank_transfer"] = "paystack"
    description: str | None = None


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    tenant_id: UUID
    subscription_id: UUID | None = None
    amount: int
    currency: str
    status: str
    provider: str
    invoice_number: str
    description: str | None = None
    due_date: datetime
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    provider_reference: str | None = None
    bank_reference: str | None = None
    confirmed_by_id: str | None = None
    confirmed_at: datetime | None = None
    created_at: datetime


class SettlementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    message: str | None = None
    payment: PaymentRead
    already_processed: bool


class CheckoutCreate(BaseModel):
    callback_url: str = Field(min_length=1, max_length=2048)


class CheckoutRead(BaseModel):
    authorization_url: str | None = None
    access_code: str | None = None
    reference: str | None = None


class GatewayVerificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    gateway_status: str
    payment: PaymentRead
    already_processed: bool


# ── Bank transfers ───────────────────────────────────────


class BankTransferRequestCreate(BaseModel):
    amount: int | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class BankDetails(BaseModel):
    bank_name: str
    account_name: str
    account_number: str
    branch_code: str
    swift_code: str
    reference: str


class BankTransferRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    payment: PaymentRead
    invoice_number: str
    bank_details: BankDetails
    due_date: datetime


class BankTransferConfirm(BaseModel):
    bank_reference: str = Field(min_length=1, max_length=255)


class PendingBankTransferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    payment_id: str
    invoice_number: str
    amount: int
    currency: str
    created_at: datetime
    tenant_id: str
    tenant_name: str | None = None
    tenant_slug: str | None = None
    subscription_plan: str | None = None
    subscription_status: str | None = None
    description: str | None = None
    days_waiting: int


class PendingBankTransferList(BaseModel):
    pending_transfers: list[PendingBankTransferRead]
    count: int


# ── Status & access ──────────────────────────────────────


class SubscriptionStatusRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    subscription: SubscriptionRead | None = None
    tenant: TenantRead
    recent_payments: list[PaymentRead] = []
    is_active: bool
    is_grace: bool
    is_read_only: bool
    is_suspended: bool
    days_until_grace: int
    days_until_read_only: int


class SubscriptionSnapshotRead(BaseModel):
    status: str
    plan: str
    current_period_end: datetime | None = None
    grace_period_end: datetime | None = None
    days_remaining: int


class AccessStatusRead(BaseModel):
    level: Literal["full", "grace", "read_only", "blocked"]
    message: str | None = None
    show_warning_banner: bool = False
    show_upgrade_prompt: bool = False
    is_blocked: bool = False
    subscription: SubscriptionSnapshotRead | None = None


# ── Reconciliation ───────────────────────────────────────


class SweepErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    phase: str
    error: str
    subscription_id: str | None = None


class SweepResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    overdue_invoices: int
    to_grace: int
    to_read_only: int
    errors: list[SweepErrorRead] = []


class SweepRunRead(BaseModel):
    message: str
    request_id: str
    timestamp: datetime
    results: SweepResultRead
