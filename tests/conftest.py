import os
import uuid
from datetime import UTC, datetime, timedelta

# Set environment variables before any tenant_billing imports read settings
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-that-is-at-least-32-characters"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_abc123"
os.environ["BILLING_CURRENCY"] = "USD"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from tenant_billing.db import Base, LedgerStore  # noqa: E402
from tenant_billing import models  # noqa: E402,F401
from tenant_billing.schemas.billing import TenantSignup  # noqa: E402
from tenant_billing.services.access_guard import AccessGuard  # noqa: E402
from tenant_billing.services.billing_engine import BillingEngine  # noqa: E402
from tenant_billing.services.tenants import tenants  # noqa: E402

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Controllable clock injected into the engine and guard."""

    def __init__(self, now: datetime = START) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture()
def engine():
    """Fresh in-memory database per test so sweeps only see this test's rows."""
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(test_engine)
    try:
        yield test_engine
    finally:
        test_engine.dispose()


@pytest.fixture()
def store(engine):
    ledger = LedgerStore(engine=engine).open()
    yield ledger
    ledger.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def billing(store, clock):
    return BillingEngine(store, clock=clock)


@pytest.fixture()
def guard(store, clock):
    return AccessGuard(store, clock=clock, fail_open_reads=False)


@pytest.fixture()
def make_tenant(billing):
    def _make_tenant(slug: str | None = None, plan: str = "basic", **overrides):
        slug = slug or f"t-{uuid.uuid4().hex[:8]}"
        payload = TenantSignup(
            name=overrides.pop("name", f"Tenant {slug}"),
            slug=slug,
            billing_email=overrides.pop("billing_email", f"billing@{slug}.example.com"),
            plan=plan,
        )
        return tenants.signup(billing, payload)

    return _make_tenant


@pytest.fixture()
def tenant(make_tenant):
    tenant, _ = make_tenant(slug="acme")
    return tenant


@pytest.fixture()
def subscription(tenant, billing):
    return billing.get_subscription_status(tenant.id).subscription


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def gateway():
    from tenant_billing.services.payment_gateway import PaystackGateway

    return PaystackGateway()


@pytest.fixture()
def client(store, clock, gateway):
    """Test client whose dependencies share the per-test store and clock."""
    from tenant_billing.api.deps import get_billing_engine, get_gateway
    from tenant_billing.main import app
    from tenant_billing.services.access_guard import get_access_guard
    from tenant_billing.services.auth_dependencies import get_store

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_billing_engine] = lambda: BillingEngine(
        store, clock=clock, gateway=gateway
    )
    app.dependency_overrides[get_access_guard] = lambda: AccessGuard(
        store, clock=clock, fail_open_reads=False
    )

    test_client = TestClient(app, raise_server_exceptions=False)
    yield test_client

    app.dependency_overrides.clear()


def _create_access_token(
    user_id: str, tenant_id: str | None = None, roles: list[str] | None = None
) -> str:
    """Create a JWT access token for testing."""
    secret = os.getenv("JWT_SECRET", "test-secret")
    algorithm = os.getenv("JWT_ALGORITHM", "HS256")
    now = datetime.now(UTC)
    expire = now + timedelta(minutes=15)
    payload = {
        "sub": user_id,
        "roles": roles or [],
        "exp": int(expire.timestamp()),
        "iat": int(now.timestamp()),
    }
    if tenant_id:
        payload["tenant_id"] = tenant_id
    return jwt.encode(payload, secret, algorithm=algorithm)


@pytest.fixture()
def auth_headers(tenant):
    """Authorization headers for a member of the ``acme`` tenant."""
    token = _create_access_token(str(uuid.uuid4()), str(tenant.id), roles=["member"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers():
    token = _create_access_token("admin-1", roles=["super_admin"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def token_factory():
    return _create_access_token
