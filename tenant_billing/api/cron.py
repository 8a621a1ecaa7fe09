"""HTTP trigger for the reconciliation sweep, for external cron runners."""

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from tenant_billing.api.deps import get_billing_engine
from tenant_billing.config import settings
from tenant_billing.schemas.billing import SweepRunRead
from tenant_billing.services.billing_engine import BillingEngine
from tenant_billing.services.reconciliation import run_reconciliation_sweep

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"])


def require_cron_secret(secret: str | None = None) -> None:
    if not settings.cron_secret:
        logger.error("CRON_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")
    if not secret or not hmac.compare_digest(secret, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route(
    "/subscription-check",
    methods=["GET", "POST"],
    response_model=SweepRunRead,
    dependencies=[Depends(require_cron_secret)],
)
def subscription_check(
    request: Request, engine: BillingEngine = Depends(get_billing_engine)
):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.info("Subscription check triggered", extra={"request_id": request_id})
    result = run_reconciliation_sweep(engine)
    return {
        "message": "Subscription check completed",
        "request_id": request_id,
        "timestamp": engine.now(),
        "results": result.as_dict(),
    }
