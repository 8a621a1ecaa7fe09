"""Paystack payment gateway integration.

The billing core never waits on Paystack inside a transaction: checkouts are
initialised up front, and confirmations arrive either as webhook events or as
verified transactions, both turned into ``PaymentConfirmation`` objects here.
"""

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from tenant_billing.config import settings

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"

_FAILED_CHARGE_STATUSES = {"failed", "abandoned", "reversed"}


@dataclass(frozen=True)
class PaymentConfirmation:
    """A resolved gateway outcome for one of our payments."""

    payment_id: uuid.UUID
    succeeded: bool
    provider_reference: str | None = None
    reason: str | None = None
    # Charged amount in minor units, as reported by the gateway.
    amount: int | None = None
    currency: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class PaystackGateway:
    """Thin wrapper around Paystack REST API."""

    def __init__(self) -> None:
        self._secret_key = settings.paystack_secret_key

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }

    def is_configured(self) -> bool:
        return bool(self._secret_key)

    # ── Transactions ─────────────────────────────────────

    def initialize_transaction(
        self,
        amount: int,
        email: str,
        reference: str,
        callback_url: str,
    ) -> dict[str, Any]:
        """Initialize a Paystack transaction for an invoice."""
        if not self.is_configured():
            raise RuntimeError("Paystack is not configured")
        payload: dict[str, Any] = {
            "amount": amount,
            "email": email,
            "reference": reference,
            "callback_url": callback_url,
        }
        with httpx.Client(timeout=30) as client:
            resp = client.post(
                f"{PAYSTACK_BASE_URL}/transaction/initialize",
                json=payload,
                headers=self._headers(),
            )
        data = resp.json()
        if not data.get("status"):
            logger.error("Paystack initialize failed: %s", data.get("message"))
            raise ValueError(data.get("message", "Failed to initialize transaction"))
        logger.info("Initialized Paystack transaction: %s", reference)
        result: dict[str, Any] = data["data"]
        return result

    def verify_transaction(self, reference: str) -> dict[str, Any]:
        """Verify a Paystack transaction by reference."""
        if not self.is_configured():
            raise RuntimeError("Paystack is not configured")
        with httpx.Client(timeout=30) as client:
            resp = client.get(
                f"{PAYSTACK_BASE_URL}/transaction/verify/{reference}",
                headers=self._headers(),
            )
        data = resp.json()
        if not data.get("status"):
            logger.error("Paystack verify failed: %s", data.get("message"))
            raise ValueError(data.get("message", "Failed to verify transaction"))
        result: dict[str, Any] = data["data"]
        return result

    # ── Webhook ──────────────────────────────────────────

    def validate_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Validate Paystack webhook HMAC signature."""
        if not self._secret_key or not signature:
            return False
        expected = hmac.new(
            self._secret_key.encode("utf-8"),
            payload,
            hashlib.sha512,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


def _charge_amount(data: dict[str, Any]) -> int | None:
    try:
        return int(data["amount"])
    except (KeyError, TypeError, ValueError):
        return None


def _confirmation(
    payment_id: uuid.UUID, data: dict[str, Any], succeeded: bool, charge_status: str
) -> PaymentConfirmation:
    currency = data.get("currency")
    reason = None
    if not succeeded:
        reason = data.get("gateway_response") or charge_status or "charge failed"
    return PaymentConfirmation(
        payment_id=payment_id,
        succeeded=succeeded,
        provider_reference=str(data["id"]) if data.get("id") is not None else None,
        reason=reason,
        amount=_charge_amount(data),
        currency=str(currency).upper() if currency else None,
        payload=data,
    )


def _payment_reference(data: dict[str, Any]) -> uuid.UUID | None:
    reference = data.get("reference")
    try:
        return uuid.UUID(str(reference))
    except ValueError:
        logger.warning("Ignoring Paystack charge with foreign reference: %s", reference)
        return None


def parse_confirmation(event: dict[str, Any]) -> PaymentConfirmation | None:
    """Translate a Paystack webhook body into a confirmation, or None to ignore."""
    data = event.get("data") or {}
    payment_id = _payment_reference(data)
    if payment_id is None:
        return None

    event_type = event.get("event")
    charge_status = str(data.get("status") or "").lower()
    if event_type == "charge.success" and charge_status in {"", "success"}:
        return _confirmation(payment_id, data, True, charge_status)
    if event_type == "charge.failed" or charge_status in _FAILED_CHARGE_STATUSES:
        return _confirmation(payment_id, data, False, charge_status)
    logger.info("Ignoring Paystack event %s for %s", event_type, payment_id)
    return None


def confirmation_from_transaction(
    data: dict[str, Any],
) -> PaymentConfirmation | None:
    """Translate a verified transaction; None while Paystack still has it open."""
    payment_id = _payment_reference(data)
    if payment_id is None:
        return None
    charge_status = str(data.get("status") or "").lower()
    if charge_status == "success":
        return _confirmation(payment_id, data, True, charge_status)
    if charge_status in _FAILED_CHARGE_STATUSES:
        return _confirmation(payment_id, data, False, charge_status)
    return None


paystack_gateway = PaystackGateway()
