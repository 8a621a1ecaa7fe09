"""Payment gateway webhook routes."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from tenant_billing.api.deps import get_billing_engine, get_gateway
from tenant_billing.errors import InvalidStateError, NotFoundError
from tenant_billing.services.billing_engine import BillingEngine
from tenant_billing.services.payment_gateway import (
    PaystackGateway,
    parse_confirmation,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    gateway: PaystackGateway = Depends(get_gateway),
    engine: BillingEngine = Depends(get_billing_engine),
) -> dict:
    """Handle Paystack webhook. No auth required, signature verified."""
    if not gateway.is_configured():
        raise HTTPException(status_code=503, detail="Payment gateway not configured")

    body = await request.body()
    signature = request.headers.get("x-paystack-signature", "")
    if not gateway.validate_webhook_signature(body, signature):
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    confirmation = parse_confirmation(payload)
    if confirmation is None:
        return {"status": "ignored"}

    try:
        engine.apply_gateway_confirmation(confirmation)
    except (InvalidStateError, NotFoundError) as exc:
        # Acknowledged so Paystack stops redelivering an event we cannot apply.
        logger.warning(
            "Ignoring Paystack %s for payment %s: %s",
            payload.get("event", ""),
            confirmation.payment_id,
            exc.message,
            extra={"payment_id": str(confirmation.payment_id)},
        )
        return {"status": "ignored"}
    logger.info(
        "Applied Paystack %s for payment %s",
        payload.get("event", ""),
        confirmation.payment_id,
        extra={"payment_id": str(confirmation.payment_id)},
    )
    return {"status": "ok"}
