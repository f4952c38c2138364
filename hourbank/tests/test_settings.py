"""Tests for server settings loaded from HOURBANK_* environment variables."""

from __future__ import annotations

import pytest

from hourbank.core.api.settings import (
    DEFAULT_DATA_DIR,
    Settings,
    check_persistence,
    load_settings,
    validate_host,
)


class TestLoadSettings:
    def test_defaults(self, monkeypatch):
        for var in (
            "HOURBANK_ENV", "HOURBANK_PORT", "HOURBANK_ENABLE_DOCS", "HOURBANK_ADMIN_KEY",
            "HOURBANK_DATA_DIR", "HOURBANK_LEDGER_PERSIST", "HOURBANK_INTENTS_PERSIST",
        ):
            monkeypatch.delenv(var, raising=False)
        s = load_settings()
        assert s.env == "dev"
        assert s.bind == "127.0.0.1"
        assert s.port == 8080
        assert s.enable_docs is True
        assert s.max_redeem_retries == 5
        assert s.payment_timeout_seconds == 30.0
        assert s.quote_ttl_seconds == 900.0
        assert s.ledger_persist is True
        assert s.intents_persist is True
        assert s.data_dir == DEFAULT_DATA_DIR
        assert DEFAULT_DATA_DIR.endswith(".hourbank")

    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("HOURBANK_PORT", "9001")
        monkeypatch.setenv("HOURBANK_LEDGER_PERSIST", "0")
        monkeypatch.setenv("HOURBANK_PAYMENT_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("HOURBANK_MAX_REDEEM_RETRIES", "9")
        monkeypatch.setenv("HOURBANK_LOG_FORMAT", "json")
        s = load_settings()
        assert s.port == 9001
        assert s.ledger_persist is False
        assert s.payment_timeout_seconds == 2.5
        assert s.max_redeem_retries == 9
        assert s.log_format == "json"

    def test_bad_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("HOURBANK_PORT", "eighty")
        monkeypatch.setenv("HOURBANK_QUOTE_TTL_SECONDS", "soon")
        s = load_settings()
        assert s.port == 8080
        assert s.quote_ttl_seconds == 900.0

    def test_prod_disables_docs(self, monkeypatch):
        monkeypatch.delenv("HOURBANK_ENABLE_DOCS", raising=False)
        monkeypatch.setenv("HOURBANK_ENV", "prod")
        assert load_settings().enable_docs is False

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("HOURBANK_PORT", "9001")
        s = load_settings(port=7000, bind="localhost", data_dir="/tmp/hb")
        assert s.port == 7000
        assert s.bind == "localhost"
        assert s.data_dir == "/tmp/hb"

    def test_secrets_masked(self):
        s = Settings(admin_key="super-secret")
        assert "super-secret" not in repr(s)
        assert s.to_dict()["admin_key"] == "configured"
        assert Settings().to_dict()["admin_key"] == "not set"


class TestValidateHost:
    @pytest.mark.parametrize("host", ["127.0.0.1", "localhost", "::1"])
    def test_local_hosts(self, host):
        validate_host(host, allow_nonlocal=False)

    def test_nonlocal_refused(self):
        with pytest.raises(ValueError, match="non-local"):
            validate_host("0.0.0.0", allow_nonlocal=False)

    def test_nonlocal_allowed(self):
        validate_host("0.0.0.0", allow_nonlocal=True)


class TestCheckPersistence:
    def test_prod_with_persistence(self):
        check_persistence(Settings(env="prod"))

    @pytest.mark.parametrize("field", ["ledger_persist", "intents_persist"])
    def test_prod_without_persistence_refused(self, field):
        with pytest.raises(ValueError, match="persistence disabled"):
            check_persistence(Settings(env="prod", **{field: False}))

    def test_dev_in_memory_allowed(self):
        check_persistence(Settings(ledger_persist=False, intents_persist=False))

    def test_create_app_refuses_prod_in_memory(self):
        from hourbank.core.api.server import create_app

        with pytest.raises(ValueError, match="HOURBANK_LEDGER_PERSIST"):
            create_app(Settings(env="prod", ledger_persist=False))
