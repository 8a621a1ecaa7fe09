"""Tests for configuration validation and health checks."""

from __future__ import annotations

import os
from dataclasses import replace
from unittest.mock import patch

from tenant_billing.config import settings, validate_settings

_STRONG_SECRET = "x" * 40


def _settings(**overrides):
    base = replace(
        settings,
        jwt_secret=_STRONG_SECRET,
        cron_secret="cron",
        access_fail_open_reads=False,
        database_url="postgresql+psycopg://db.internal/billing",
    )
    return replace(base, **overrides)


class TestValidateSettings:
    def test_clean_settings_have_no_warnings(self) -> None:
        assert validate_settings(_settings()) == []

    def test_missing_jwt_secret(self) -> None:
        warnings = validate_settings(_settings(jwt_secret=""))
        assert any("JWT_SECRET is not set" in w for w in warnings)

    def test_short_jwt_secret(self) -> None:
        warnings = validate_settings(_settings(jwt_secret="short"))
        assert any("shorter than 32" in w for w in warnings)

    def test_missing_cron_secret(self) -> None:
        warnings = validate_settings(_settings(cron_secret=""))
        assert any("CRON_SECRET" in w for w in warnings)

    def test_fail_open_reads_is_flagged(self) -> None:
        warnings = validate_settings(_settings(access_fail_open_reads=True))
        assert any("ACCESS_FAIL_OPEN_READS" in w for w in warnings)

    def test_localhost_database_in_production(self) -> None:
        s = _settings(database_url="postgresql+psycopg://postgres@localhost/billing")
        with patch.dict(os.environ, {"ENVIRONMENT": "production"}):
            warnings = validate_settings(s)
        assert any("localhost" in w for w in warnings)

    def test_localhost_database_outside_production(self) -> None:
        s = _settings(database_url="postgresql+psycopg://postgres@localhost/billing")
        with patch.dict(os.environ, {"ENVIRONMENT": "dev"}):
            assert validate_settings(s) == []


class TestSettingsDefaults:
    def test_sweep_interval_default(self) -> None:
        assert settings.sweep_interval_seconds == 3600

    def test_super_admin_role_default(self) -> None:
        assert settings.super_admin_role == "super_admin"


class TestHealthEndpoints:
    def test_liveness(self, client) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_readiness_without_store_is_degraded(self, client) -> None:
        with patch("redis.Redis.from_url") as from_url:
            from_url.return_value.ping.return_value = True
            resp = client.get("/health/ready")
        assert resp.status_code == 503
        body = resp.json()
        assert body["checks"]["redis"] == "ok"
        assert body["checks"]["database"].startswith("error")
