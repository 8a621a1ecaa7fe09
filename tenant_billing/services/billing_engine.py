"""Billing engine: subscriptions, invoices, payment settlement.

This is the only component that changes subscription or tenant status, and it
does so exclusively through ``lifecycle.apply_transition``. Every operation
that touches more than one row runs inside a single ``LedgerStore``
transaction with the payment/subscription/tenant rows locked ``FOR UPDATE``.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from tenant_billing.config import settings
from tenant_billing.db import LedgerStore
from tenant_billing.errors import BillingError, InvalidStateError, NotFoundError
from tenant_billing.models.billing import (
    BillingCycle,
    Payment,
    PaymentProvider,
    PaymentStatus,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    Tenant,
)
from tenant_billing.services.common import (
    SECONDS_PER_DAY,
    as_utc,
    days_until,
    require_uuid,
    utcnow,
)
from tenant_billing.services.lifecycle import (
    INVOICE_DUE_DAYS,
    Trigger,
    apply_transition,
    compute_period,
    trial_period,
)
from tenant_billing.services.payment_gateway import (
    PaymentConfirmation,
    PaystackGateway,
    confirmation_from_transaction,
)
from tenant_billing.services.pricing import plan_amount

logger = logging.getLogger(__name__)

_OPEN_PAYMENT_STATUSES = (PaymentStatus.pending, PaymentStatus.overdue)


def format_invoice_number(slug: str | None, moment: datetime, sequence: int) -> str:
    """INV-<SLUG upper, max 8 chars>-<YYYYMM>-<3-digit sequence>."""
    return f"{invoice_prefix(slug, moment)}{sequence:03d}"


def invoice_prefix(slug: str | None, moment: datetime) -> str:
    tag = (slug or "UNK").upper()[:8]
    return f"INV-{tag}-{moment:%Y%m}-"


@dataclass
class SettlementResult:
    payment: Payment
    already_processed: bool


@dataclass
class GatewayVerification:
    payment: Payment
    gateway_status: str
    already_processed: bool = False


@dataclass
class SubscriptionOverview:
    subscription: Subscription | None
    tenant: Tenant
    recent_payments: list[Payment] = field(default_factory=list)
    is_active: bool = False
    is_grace: bool = False
    is_read_only: bool = False
    is_suspended: bool = False
    days_until_grace: int = 0
    days_until_read_only: int = 0


@dataclass
class BankTransferRequest:
    payment: Payment
    invoice_number: str
    bank_details: dict[str, str]
    due_date: datetime


@dataclass
class PendingBankTransfer:
    payment_id: str
    invoice_number: str
    amount: int
    currency: str
    created_at: datetime
    tenant_id: str
    tenant_name: str | None
    tenant_slug: str | None
    subscription_plan: str | None
    subscription_status: str | None
    description: str | None
    days_waiting: int


def charge_mismatch(payment: Payment, confirmation: PaymentConfirmation) -> str | None:
    """Why a reported charge cannot settle the invoice, or None when it matches."""
    if confirmation.amount != payment.amount:
        return (
            f"Amount mismatch: charged {confirmation.amount}, invoiced {payment.amount}"
        )
    if confirmation.currency and confirmation.currency.upper() != payment.currency.upper():
        return (
            f"Currency mismatch: charged {confirmation.currency}, "
            f"invoiced {payment.currency}"
        )
    return None


def _coerce_plan(plan: SubscriptionPlan | str) -> SubscriptionPlan:
    try:
        return SubscriptionPlan(str(getattr(plan, "value", plan)).lower())
    except ValueError as exc:
        raise BillingError(f"Unknown plan: {plan}") from exc


def _coerce_provider(method: PaymentProvider | str) -> PaymentProvider:
    try:
        return PaymentProvider(str(getattr(method, "value", method)).lower())
    except ValueError as exc:
        raise BillingError(f"Unsupported payment method: {method}") from exc


class BillingEngine:
    def __init__(
        self,
        store: LedgerStore,
        clock: Callable[[], datetime] = utcnow,
        gateway: PaystackGateway | None = None,
    ) -> None:
        self.store = store
        self._clock = clock
        self._gateway = gateway

    def now(self) -> datetime:
        return self._clock()

    # ── Row access ───────────────────────────────────────

    @staticmethod
    def _lock_tenant(db: Session, tenant_id: Any) -> Tenant:
        tenant = db.get(Tenant, require_uuid(tenant_id, "Tenant"), with_for_update=True)
        if not tenant:
            raise NotFoundError("Tenant not found")
        return tenant

    @staticmethod
    def _lock_payment(db: Session, payment_id: Any) -> Payment:
        payment = db.get(
            Payment, require_uuid(payment_id, "Payment"), with_for_update=True
        )
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    @staticmethod
    def _lock_subscription(db: Session, subscription_id: Any) -> Subscription:
        subscription = db.get(
            Subscription,
            require_uuid(subscription_id, "Subscription"),
            with_for_update=True,
        )
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    @staticmethod
    def _subscription_for_tenant(
        db: Session, tenant_id: Any, lock: bool = False
    ) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.tenant_id == require_uuid(tenant_id, "Tenant")
        )
        if lock:
            stmt = stmt.with_for_update()
        return db.scalar(stmt)

    # ── Trial ────────────────────────────────────────────

    def create_trial_subscription(
        self, tenant_id: Any, plan: SubscriptionPlan | str = SubscriptionPlan.basic
    ) -> Subscription:
        with self.store.transaction() as db:
            tenant = self._lock_tenant(db, tenant_id)
            return self.start_trial(db, tenant, plan)

    def start_trial(
        self, db: Session, tenant: Tenant, plan: SubscriptionPlan | str
    ) -> Subscription:
        """Create the TRIAL subscription inside the caller's transaction."""
        if self._subscription_for_tenant(db, tenant.id, lock=True):
            raise InvalidStateError("Subscription already exists for tenant")
        plan = _coerce_plan(plan)
        now = self.now()
        period = trial_period(now)
        subscription = Subscription(
            tenant_id=tenant.id,
            plan=plan,
            amount=plan_amount(plan, BillingCycle.monthly, settings.billing_currency),
            currency=settings.billing_currency,
            billing_cycle=BillingCycle.monthly,
            trial_ends_at=period.end,
            current_period_start=period.start,
            current_period_end=period.end,
            grace_period_end=period.grace_end,
        )
        apply_transition(subscription, tenant, Trigger.signup)
        tenant.trial_ends_at = period.end
        db.add(subscription)
        db.flush()
        logger.info(
            "Created trial subscription %s for tenant %s, ends %s",
            subscription.id,
            tenant.id,
            period.end.isoformat(),
            extra={"tenant_id": str(tenant.id)},
        )
        return subscription

    # ── Invoices ─────────────────────────────────────────

    def _next_invoice_number(self, db: Session, tenant: Tenant, now: datetime) -> str:
        prefix = invoice_prefix(tenant.slug, now)
        count = db.scalar(
            select(func.count())
            .select_from(Payment)
            .where(
                Payment.tenant_id == tenant.id,
                Payment.invoice_number.startswith(prefix),
            )
        ) or 0
        return format_invoice_number(tenant.slug, now, count + 1)

    def _raise_invoice(
        self,
        db: Session,
        tenant: Tenant,
        subscription: Subscription,
        amount: int,
        currency: str | None,
        provider: PaymentProvider,
        description: str | None,
    ) -> Payment:
        if amount is None or amount <= 0:
            raise BillingError("Invoice amount must be positive")
        now = self.now()
        invoice_number = self._next_invoice_number(db, tenant, now)
        payment = Payment(
            tenant_id=tenant.id,
            subscription_id=subscription.id,
            amount=amount,
            currency=(currency or subscription.currency).upper(),
            status=PaymentStatus.pending,
            provider=provider,
            invoice_number=invoice_number,
            due_date=now + timedelta(days=INVOICE_DUE_DAYS),
            description=description
            or f"{subscription.plan.value} subscription - {subscription.billing_cycle.value}",
        )
        db.add(payment)
        db.flush()
        logger.info(
            "Created invoice %s for tenant %s, amount %s %s",
            invoice_number,
            tenant.id,
            payment.amount,
            payment.currency,
            extra={"tenant_id": str(tenant.id), "payment_id": str(payment.id)},
        )
        return payment

    def create_invoice(
        self,
        tenant_id: Any,
        amount: int,
        currency: str | None = None,
        method: PaymentProvider | str = PaymentProvider.paystack,
        description: str | None = None,
    ) -> Payment:
        provider = _coerce_provider(method)
        with self.store.transaction() as db:
            # Tenant row lock serialises invoice numbering per tenant.
            tenant = self._lock_tenant(db, tenant_id)
            subscription = self._subscription_for_tenant(db, tenant.id)
            if not subscription:
                raise NotFoundError("No subscription found for tenant")
            return self._raise_invoice(
                db, tenant, subscription, amount, currency, provider, description
            )

    def create_bank_transfer_request(
        self, tenant_id: Any, amount: int | None = None, currency: str | None = None
    ) -> BankTransferRequest:
        with self.store.transaction() as db:
            tenant = self._lock_tenant(db, tenant_id)
            subscription = self._subscription_for_tenant(db, tenant.id)
            if not subscription:
                raise NotFoundError("No subscription found for tenant")
            payment = self._raise_invoice(
                db,
                tenant,
                subscription,
                amount if amount is not None else subscription.amount,
                currency,
                PaymentProvider.bank_transfer,
                None,
            )
            payment.description = (
                f"Subscription payment - Invoice {payment.invoice_number}"
            )
        bank_details = {
            "bank_name": settings.bank_name,
            "account_name": settings.bank_account_name,
            "account_number": settings.bank_account_number,
            "branch_code": settings.bank_branch_code,
            "swift_code": settings.bank_swift_code,
            "reference": payment.invoice_number,
        }
        logger.info("Bank transfer request created: %s", payment.invoice_number)
        return BankTransferRequest(
            payment=payment,
            invoice_number=payment.invoice_number,
            bank_details=bank_details,
            due_date=payment.due_date,
        )

    # ── Settlement ───────────────────────────────────────

    def _settle(
        self,
        db: Session,
        payment: Payment,
        provider_reference: str | None,
        provider_response: dict | None,
    ) -> SettlementResult:
        if payment.status == PaymentStatus.success:
            logger.info(
                "Payment %s already processed, skipping",
                payment.id,
                extra={"payment_id": str(payment.id)},
            )
            return SettlementResult(payment=payment, already_processed=True)

        now = self.now()
        payment.status = PaymentStatus.success
        payment.paid_at = now
        payment.provider_reference = provider_reference or payment.provider_reference
        payment.provider_response = provider_response or payment.provider_response

        if payment.subscription_id:
            subscription = self._lock_subscription(db, payment.subscription_id)
            tenant = self._lock_tenant(db, subscription.tenant_id)
            # A late payment buys a fresh cycle from now, not from the stale period end.
            period = compute_period(now, subscription.billing_cycle)
            subscription.current_period_start = period.start
            subscription.current_period_end = period.end
            subscription.grace_period_end = period.grace_end
            if provider_reference:
                subscription.provider_subscription_id = provider_reference
            apply_transition(subscription, tenant, Trigger.payment_settled)

        db.flush()
        logger.info(
            "Payment %s successful, subscription activated for tenant %s",
            payment.id,
            payment.tenant_id,
            extra={"payment_id": str(payment.id), "tenant_id": str(payment.tenant_id)},
        )
        return SettlementResult(payment=payment, already_processed=False)

    def process_successful_payment(
        self,
        payment_id: Any,
        provider_reference: str | None = None,
        provider_response: dict | None = None,
    ) -> SettlementResult:
        """Settle a payment and activate its subscription. Idempotent."""
        with self.store.transaction() as db:
            payment = self._lock_payment(db, payment_id)
            return self._settle(db, payment, provider_reference, provider_response)

    def _record_failure(self, db: Session, payment: Payment, reason: str | None) -> None:
        payment.status = PaymentStatus.failed
        payment.failed_at = self.now()
        payment.failure_reason = reason
        db.flush()

    def process_failed_payment(self, payment_id: Any, reason: str | None = None) -> Payment:
        """Record a failed charge. Demotion is left to the sweep."""
        with self.store.transaction() as db:
            payment = self._lock_payment(db, payment_id)
            if payment.status == PaymentStatus.success:
                raise InvalidStateError("Payment already succeeded")
            if payment.status == PaymentStatus.failed:
                logger.info("Payment %s already marked failed", payment.id)
                return payment
            self._record_failure(db, payment, reason)
        logger.warning(
            "Payment %s failed: %s",
            payment.id,
            reason,
            extra={"payment_id": str(payment.id), "tenant_id": str(payment.tenant_id)},
        )
        return payment

    def confirm_bank_transfer(
        self, payment_id: Any, confirmer_id: Any, bank_reference: str | None = None
    ) -> SettlementResult:
        with self.store.transaction() as db:
            payment = self._lock_payment(db, payment_id)
            if payment.provider != PaymentProvider.bank_transfer:
                raise InvalidStateError("Payment is not a bank transfer")
            if payment.status == PaymentStatus.success:
                raise InvalidStateError("Payment already confirmed")
            if payment.status not in _OPEN_PAYMENT_STATUSES:
                raise InvalidStateError(
                    f"Payment cannot be confirmed from status {payment.status.value}"
                )
            payment.bank_reference = bank_reference
            payment.confirmed_by_id = str(confirmer_id)
            payment.confirmed_at = self.now()
            result = self._settle(db, payment, bank_reference, None)
        logger.info(
            "Bank transfer %s confirmed by %s",
            payment.invoice_number,
            confirmer_id,
            extra={"payment_id": str(payment.id), "actor_id": str(confirmer_id)},
        )
        return result

    def apply_gateway_confirmation(
        self, confirmation: PaymentConfirmation
    ) -> SettlementResult | Payment:
        """Apply a gateway outcome; a charge that misses the invoice never settles it."""
        if not confirmation.succeeded:
            return self.process_failed_payment(
                confirmation.payment_id, confirmation.reason
            )
        with self.store.transaction() as db:
            payment = self._lock_payment(db, confirmation.payment_id)
            mismatch = charge_mismatch(payment, confirmation)
            if mismatch is None or payment.status == PaymentStatus.success:
                return self._settle(
                    db, payment, confirmation.provider_reference, confirmation.payload
                )
            self._record_failure(db, payment, mismatch)
            payment.provider_reference = (
                confirmation.provider_reference or payment.provider_reference
            )
            payment.provider_response = confirmation.payload or payment.provider_response
        logger.warning(
            "Rejected gateway charge for payment %s: %s",
            payment.id,
            mismatch,
            extra={"payment_id": str(payment.id), "tenant_id": str(payment.tenant_id)},
        )
        return payment

    def _gateway_payment(self, db: Session, tenant_id: Any, payment_id: Any) -> Payment:
        payment = db.get(Payment, require_uuid(payment_id, "Payment"))
        if not payment or payment.tenant_id != require_uuid(tenant_id, "Tenant"):
            raise NotFoundError("Payment not found")
        if payment.provider != PaymentProvider.paystack:
            raise InvalidStateError("Payment is not a gateway payment")
        return payment

    def start_gateway_checkout(
        self, tenant_id: Any, payment_id: Any, callback_url: str
    ) -> dict[str, Any]:
        """Open a gateway transaction for a pending invoice.

        The gateway call happens between two short transactions so that no
        row lock is held across network I/O.
        """
        if self._gateway is None:
            raise InvalidStateError("Payment gateway is not configured")
        with self.store.session() as db:
            payment = self._gateway_payment(db, tenant_id, payment_id)
            if payment.status not in _OPEN_PAYMENT_STATUSES:
                raise InvalidStateError(
                    f"Payment cannot be paid from status {payment.status.value}"
                )
            tenant = db.get(Tenant, payment.tenant_id)
            email = tenant.billing_email if tenant else None
            amount = payment.amount
        if not email:
            raise InvalidStateError("Tenant has no billing email")

        data = self._gateway.initialize_transaction(
            amount=amount,
            email=email,
            reference=str(payment.id),
            callback_url=callback_url,
        )
        with self.store.transaction() as db:
            locked = self._lock_payment(db, payment.id)
            locked.checkout_reference = data.get("access_code") or data.get("reference")
        return data

    def verify_gateway_payment(
        self, tenant_id: Any, payment_id: Any
    ) -> GatewayVerification:
        """Ask Paystack for the outcome of a checkout and apply it.

        Covers checkouts whose webhook never arrived. Like checkout, the
        gateway call is made with no transaction open.
        """
        if self._gateway is None:
            raise InvalidStateError("Payment gateway is not configured")
        with self.store.session() as db:
            payment = self._gateway_payment(db, tenant_id, payment_id)
        if payment.status == PaymentStatus.success:
            return GatewayVerification(
                payment=payment, gateway_status="success", already_processed=True
            )

        try:
            data = self._gateway.verify_transaction(str(payment.id))
        except ValueError as exc:
            raise BillingError(f"Could not verify payment: {exc}") from exc
        gateway_status = str(data.get("status") or "unknown").lower()

        confirmation = confirmation_from_transaction(data)
        if confirmation is None or confirmation.payment_id != payment.id:
            logger.info(
                "Payment %s still %s at gateway",
                payment.id,
                gateway_status,
                extra={"payment_id": str(payment.id)},
            )
            return GatewayVerification(payment=payment, gateway_status=gateway_status)

        outcome = self.apply_gateway_confirmation(confirmation)
        if isinstance(outcome, SettlementResult):
            return GatewayVerification(
                payment=outcome.payment,
                gateway_status=gateway_status,
                already_processed=outcome.already_processed,
            )
        return GatewayVerification(payment=outcome, gateway_status=gateway_status)

    # ── Administration ───────────────────────────────────

    def suspend_subscription(
        self, subscription_id: Any, reason: str | None = None
    ) -> Subscription:
        with self.store.transaction() as db:
            subscription = self._lock_subscription(db, subscription_id)
            tenant = self._lock_tenant(db, subscription.tenant_id)
            apply_transition(subscription, tenant, Trigger.admin_suspend)
            subscription.suspension_reason = reason
            subscription.suspended_at = self.now()
            db.flush()
        logger.warning(
            "Subscription %s SUSPENDED: %s",
            subscription.id,
            reason,
            extra={"subscription_id": str(subscription.id)},
        )
        return subscription

    # ── Time-driven transitions (used by the sweep) ──────

    def mark_overdue_invoices(self, now: datetime | None = None) -> int:
        now = now or self.now()
        with self.store.transaction() as db:
            result = db.execute(
                update(Payment)
                .where(
                    Payment.status == PaymentStatus.pending,
                    Payment.due_date < now,
                )
                .values(status=PaymentStatus.overdue)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0
        if count:
            logger.warning("Marked %s invoices as overdue", count)
        return count

    def find_lapsed_subscriptions(self, now: datetime | None = None) -> list[str]:
        now = now or self.now()
        with self.store.session() as db:
            ids = db.scalars(
                select(Subscription.id).where(
                    Subscription.status.in_(
                        [SubscriptionStatus.active, SubscriptionStatus.trial]
                    ),
                    Subscription.current_period_end < now,
                )
            ).all()
        return [str(item) for item in ids]

    def find_expired_grace(self, now: datetime | None = None) -> list[str]:
        now = now or self.now()
        with self.store.session() as db:
            ids = db.scalars(
                select(Subscription.id).where(
                    Subscription.status == SubscriptionStatus.grace,
                    Subscription.grace_period_end < now,
                )
            ).all()
        return [str(item) for item in ids]

    def transition_to_grace(self, subscription_id: Any, now: datetime | None = None) -> bool:
        """ACTIVE/TRIAL -> GRACE once the period has ended. False if not applicable."""
        now = now or self.now()
        with self.store.transaction() as db:
            subscription = self._lock_subscription(db, subscription_id)
            if as_utc(subscription.current_period_end) >= now:
                return False
            tenant = self._lock_tenant(db, subscription.tenant_id)
            changed = apply_transition(subscription, tenant, Trigger.period_lapsed)
        if changed:
            logger.warning(
                "Subscription %s transitioned to GRACE",
                subscription.id,
                extra={"subscription_id": str(subscription.id)},
            )
        return changed

    def transition_to_read_only(
        self, subscription_id: Any, now: datetime | None = None
    ) -> bool:
        """GRACE -> READ_ONLY once the grace window has ended. False if not applicable."""
        now = now or self.now()
        with self.store.transaction() as db:
            subscription = self._lock_subscription(db, subscription_id)
            if as_utc(subscription.grace_period_end) >= now:
                return False
            tenant = self._lock_tenant(db, subscription.tenant_id)
            changed = apply_transition(subscription, tenant, Trigger.grace_expired)
        if changed:
            logger.warning(
                "Subscription %s transitioned to READ_ONLY",
                subscription.id,
                extra={"subscription_id": str(subscription.id)},
            )
        return changed

    # ── Read projections ─────────────────────────────────

    def get_subscription_status(self, tenant_id: Any) -> SubscriptionOverview:
        now = self.now()
        with self.store.session() as db:
            tenant = db.get(Tenant, require_uuid(tenant_id, "Tenant"))
            if not tenant:
                raise NotFoundError("Tenant not found")
            subscription = self._subscription_for_tenant(db, tenant.id)
            payments: list[Payment] = []
            if subscription:
                payments = list(
                    db.scalars(
                        select(Payment)
                        .where(Payment.subscription_id == subscription.id)
                        .order_by(Payment.created_at.desc())
                        .limit(10)
                    ).all()
                )
        status = subscription.status if subscription else None
        return SubscriptionOverview(
            subscription=subscription,
            tenant=tenant,
            recent_payments=payments,
            is_active=status in (SubscriptionStatus.active, SubscriptionStatus.trial),
            is_grace=status == SubscriptionStatus.grace,
            is_read_only=status == SubscriptionStatus.read_only,
            is_suspended=status == SubscriptionStatus.suspended,
            days_until_grace=days_until(
                subscription.current_period_end if subscription else None, now
            ),
            days_until_read_only=days_until(
                subscription.grace_period_end if subscription else None, now
            ),
        )

    def list_pending_bank_transfers(self) -> list[PendingBankTransfer]:
        now = self.now()
        with self.store.session() as db:
            payments = db.scalars(
                select(Payment)
                .options(joinedload(Payment.tenant), joinedload(Payment.subscription))
                .where(
                    Payment.provider == PaymentProvider.bank_transfer,
                    Payment.status == PaymentStatus.pending,
                )
                .order_by(Payment.created_at.asc())
            ).all()
            return [
                PendingBankTransfer(
                    payment_id=str(payment.id),
                    invoice_number=payment.invoice_number,
                    amount=payment.amount,
                    currency=payment.currency,
                    created_at=as_utc(payment.created_at),
                    tenant_id=str(payment.tenant_id),
                    tenant_name=payment.tenant.name if payment.tenant else None,
                    tenant_slug=payment.tenant.slug if payment.tenant else None,
                    subscription_plan=(
                        payment.subscription.plan.value if payment.subscription else None
                    ),
                    subscription_status=(
                        payment.subscription.status.value
                        if payment.subscription
                        else None
                    ),
                    description=payment.description,
                    days_waiting=max(
                        0,
                        math.floor(
                            (now - as_utc(payment.created_at)).total_seconds()
                            / SECONDS_PER_DAY
                        ),
                    ),
                )
                for payment in payments
            ]
