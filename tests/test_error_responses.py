"""Tests for structured error responses with request_id."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from tenant_billing.errors import (
    AccessDeniedError,
    InvalidStateError,
    NotFoundError,
    TransientStoreError,
    register_error_handlers,
)
from tenant_billing.observability import ObservabilityMiddleware


@pytest.fixture
def app_with_errors() -> FastAPI:
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)
    register_error_handlers(app)

    @app.get("/ok")
    def ok():
        return {"ok": True}

    @app.get("/http-error")
    def http_error():
        raise HTTPException(status_code=403, detail="Forbidden")

    @app.get("/not-found")
    def not_found():
        raise NotFoundError("Payment not found")

    @app.get("/invalid-state")
    def invalid_state():
        raise InvalidStateError("Payment already confirmed")

    @app.get("/store-down")
    def store_down():
        raise TransientStoreError("Ledger store unavailable")

    @app.get("/denied")
    def denied():
        raise AccessDeniedError(
            "Your account has been suspended. Please contact support.",
            "blocked",
            {"status": "SUSPENDED", "current_period_end": datetime(2026, 1, 1, tzinfo=UTC)},
        )

    @app.get("/crash")
    def crash():
        raise RuntimeError("boom")

    return app


@pytest.fixture
def client(app_with_errors: FastAPI) -> TestClient:
    return TestClient(app_with_errors, raise_server_exceptions=False)


class TestErrorResponses:
    def test_http_error_includes_request_id(self, client: TestClient) -> None:
        resp = client.get("/http-error")
        assert resp.status_code == 403
        body = resp.json()
        assert "request_id" in body
        assert body["code"] == "http_403"
        assert body["message"] == "Forbidden"

    @pytest.mark.parametrize(
        ("path", "status", "code"),
        [
            ("/not-found", 404, "not_found"),
            ("/invalid-state", 409, "invalid_state"),
            ("/store-down", 503, "store_unavailable"),
        ],
    )
    def test_billing_errors_map_to_status(
        self, client: TestClient, path: str, status: int, code: str
    ) -> None:
        resp = client.get(path)
        assert resp.status_code == status
        assert resp.json()["code"] == code

    def test_access_denied_carries_level_and_subscription(self, client: TestClient) -> None:
        resp = client.get("/denied")
        assert resp.status_code == 403
        body = resp.json()
        assert body["code"] == "subscription_required"
        assert body["details"]["level"] == "blocked"
        assert body["details"]["subscription"]["status"] == "SUSPENDED"
        assert body["details"]["subscription"]["current_period_end"].startswith("2026-01-01")

    def test_unhandled_exception_includes_request_id(self, client: TestClient) -> None:
        resp = client.get("/crash")
        assert resp.status_code == 500
        body = resp.json()
        assert body["code"] == "internal_error"
        assert body["message"] == "Internal server error"
        assert "request_id" in body
        assert body["details"] is None

    def test_request_id_propagated_from_header(self, client: TestClient) -> None:
        custom_id = "test-request-id-12345"
        resp = client.get("/not-found", headers={"X-Request-Id": custom_id})
        assert resp.json()["request_id"] == custom_id

    def test_success_response_has_request_id_header(self, client: TestClient) -> None:
        resp = client.get("/ok")
        assert resp.status_code == 200
        assert "x-request-id" in resp.headers
