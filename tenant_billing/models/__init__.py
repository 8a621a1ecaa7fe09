from tenant_billing.models.billing import (  # noqa: F401
    BillingCycle,
    Payment,
    PaymentProvider,
    PaymentStatus,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    Tenant,
)
