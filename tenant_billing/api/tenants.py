from fastapi import APIRouter, Depends, status

from tenant_billing.api.deps import get_billing_engine
from tenant_billing.schemas.billing import TenantSignup, TenantSignupRead
from tenant_billing.services.billing_engine import BillingEngine
from tenant_billing.services.tenants import tenants

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.post(
    "", response_model=TenantSignupRead, status_code=status.HTTP_201_CREATED
)
def signup_tenant(
    payload: TenantSignup, engine: BillingEngine = Depends(get_billing_engine)
):
    tenant, subscription = tenants.signup(engine, payload)
    return {"tenant": tenant, "subscription": subscription}
