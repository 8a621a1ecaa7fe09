from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import JSONResponse, Response

from tenant_billing.api.billing import router as billing_router
from tenant_billing.api.cron import router as cron_router
from tenant_billing.api.tenants import router as tenants_router
from tenant_billing.api.webhooks import router as webhooks_router
from tenant_billing.config import settings, validate_settings
from tenant_billing.db import LedgerStore
from tenant_billing.errors import register_error_handlers
from tenant_billing.logging import configure_logging
from tenant_billing.observability import ObservabilityMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[arg-type]
    # ── Startup ──────────────────────────────────────────
    warnings = validate_settings(settings)
    for w in warnings:
        logger.warning("Config warning: %s", w)

    store = LedgerStore(settings.database_url).open()
    app.state.store = store

    logger.info("Application started (pid=%s)", os.getpid())
    yield

    # ── Shutdown ─────────────────────────────────────────
    logger.info("Application shutting down")
    app.state.store = None
    store.close()


app = FastAPI(title="Tenant Billing API", lifespan=lifespan)
configure_logging()

# ── Middleware (order matters: last added = first executed) ──
register_error_handlers(app)

cors_origins = [
    o.strip()
    for o in settings.cors_origins.split(",")
    if o.strip()
]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-Id",
            "X-Subscription-Warning",
            "X-Subscription-Level",
        ],
    )

app.add_middleware(ObservabilityMiddleware)

# Billing routes carry no access guard: a restricted tenant must still be able to pay.
app.include_router(tenants_router)
app.include_router(billing_router)
app.include_router(webhooks_router)
app.include_router(cron_router)


# ── Health Checks ────────────────────────────────────────


@app.get("/health")
def health_check() -> dict[str, str]:
    """Liveness probe; always returns ok if the process is running."""
    return {"status": "ok"}


@app.get("/health/ready")
def readiness_check(request: Request) -> JSONResponse:
    """Readiness probe: verifies ledger store and Redis connectivity."""
    checks: dict[str, str] = {}

    store = getattr(request.app.state, "store", None)
    if store is None or not store.is_open:
        checks["database"] = "error: ledger store is not open"
    else:
        try:
            with store.session() as db:
                db.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"

    try:
        import redis as redis_lib

        r = redis_lib.Redis.from_url(
            settings.redis_url, decode_responses=True, socket_timeout=2
        )
        r.ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ok" if all_ok else "degraded", "checks": checks},
    )


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
