"""Background jobs run by the Celery worker."""
import logging

from tenant_billing.celery_app import celery_app
from tenant_billing.config import settings
from tenant_billing.db import LedgerStore
from tenant_billing.scheduler_config import SWEEP_TASK_NAME
from tenant_billing.services.billing_engine import BillingEngine
from tenant_billing.services.reconciliation import run_reconciliation_sweep

logger = logging.getLogger(__name__)


@celery_app.task(name=SWEEP_TASK_NAME)
def run_reconciliation_sweep_task() -> dict:
    store = LedgerStore(settings.database_url).open()
    try:
        result = run_reconciliation_sweep(BillingEngine(store))
    finally:
        store.close()
    return result.as_dict()
