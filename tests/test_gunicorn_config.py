"""Tests for gunicorn configuration."""
from __future__ import annotations

import importlib.util
import os
from unittest.mock import patch


def _load(name: str = "gunicorn_conf"):
    spec = importlib.util.spec_from_file_location(name, "gunicorn.conf.py")
    assert spec is not None
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[union-attr]
    return mod


class TestGunicornConfig:
    def test_config_loads(self) -> None:
        mod = _load()
        assert hasattr(mod, "bind")
        assert hasattr(mod, "workers")
        assert hasattr(mod, "timeout")
        assert mod.proc_name == "tenant_billing"

    def test_worker_class_is_uvicorn(self) -> None:
        assert "uvicorn" in _load().worker_class

    def test_timeout_covers_gateway_calls(self) -> None:
        assert _load().timeout > 30

    def test_env_override_workers(self) -> None:
        with patch.dict(os.environ, {"GUNICORN_WORKERS": "4"}):
            assert _load("gunicorn_conf_custom").workers == 4

    def test_preload_defaults_false(self) -> None:
        assert _load("gunicorn_conf_preload").preload_app is False
