import logging

from sqlalchemy import select

from tenant_billing.errors import InvalidStateError
from tenant_billing.models.billing import Subscription, Tenant
from tenant_billing.schemas.billing import TenantSignup
from tenant_billing.services.billing_engine import BillingEngine

logger = logging.getLogger(__name__)


class Tenants:
    @staticmethod
    def signup(
        engine: BillingEngine, payload: TenantSignup
    ) -> tuple[Tenant, Subscription]:
        """Create the tenant and its trial subscription as one unit."""
        slug = payload.slug.lower()
        with engine.store.transaction() as db:
            if db.scalar(select(Tenant.id).where(Tenant.slug == slug)):
                raise InvalidStateError("Tenant slug already taken")
            tenant = Tenant(
                name=payload.name,
                slug=slug,
                billing_email=payload.billing_email,
            )
            db.add(tenant)
            db.flush()
            subscription = engine.start_trial(db, tenant, payload.plan)
        logger.info("Signed up tenant %s (%s)", tenant.id, tenant.slug)
        return tenant, subscription


tenants = Tenants()
