"""Tests for the payment collaborator boundary -- config, mock gateway, event parsing."""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from hourbank.core.checkout.payments import (
    MockPaymentClient,
    PaymentStatus,
    StripeConfig,
    StripePaymentClient,
    build_payment_client,
)


def _event(event_type: str, token: str = "tok_1", payment_id: str = "pi_123") -> bytes:
    return json.dumps({
        "type": event_type,
        "data": {"object": {"id": payment_id, "metadata": {"intent_token": token}}},
    }).encode()


class TestStripeConfig:
    def test_from_env_disabled(self, monkeypatch):
        monkeypatch.delenv("HOURBANK_STRIPE_ENABLED", raising=False)
        cfg = StripeConfig.from_env()
        assert cfg.enabled is False
        assert cfg.validate() is None

    def test_from_env_enabled(self, monkeypatch):
        monkeypatch.setenv("HOURBANK_STRIPE_ENABLED", "1")
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
        cfg = StripeConfig.from_env()
        assert cfg.enabled is True
        assert cfg.secret_key == "sk_test"
        assert cfg.currency == "brl"
        assert cfg.validate() is None

    def test_validate_missing_keys(self):
        cfg = StripeConfig(enabled=True)
        error = cfg.validate()
        assert "STRIPE_SECRET_KEY" in error
        assert "STRIPE_WEBHOOK_SECRET" in error


class TestBuildPaymentClient:
    def test_disabled_uses_mock(self):
        assert isinstance(build_payment_client(StripeConfig()), MockPaymentClient)

    def test_enabled_but_misconfigured(self):
        with pytest.raises(RuntimeError, match="missing env vars"):
            build_payment_client(StripeConfig(enabled=True))

    def test_stripe_client_refuses_when_disabled(self):
        with pytest.raises(RuntimeError, match="disabled"):
            StripePaymentClient(StripeConfig())


class TestMockPaymentClient:
    def test_card_succeeds(self):
        client = MockPaymentClient()
        result = client.charge(Decimal("2770.00"), "card", "tok_1")
        assert result.status is PaymentStatus.SUCCEEDED
        assert result.payment_id == "pay_mock_0001"

    def test_pix_is_pending(self):
        result = MockPaymentClient().charge(Decimal("2770.00"), "pix", "tok_1")
        assert result.status is PaymentStatus.PENDING

    @pytest.mark.parametrize("method", ["fail", "declined"])
    def test_failing_methods(self, method):
        result = MockPaymentClient().charge(Decimal("10"), method, "tok_1")
        assert result.status is PaymentStatus.FAILED
        assert result.error

    def test_records_charges(self):
        client = MockPaymentClient()
        client.charge(Decimal("1"), "card", "tok_1")
        client.charge(Decimal("2"), "pix", "tok_2")
        assert [c["token"] for c in client.charges] == ["tok_1", "tok_2"]

    def test_parse_success_event(self):
        event = MockPaymentClient().parse_event(_event("payment_intent.succeeded"), "sig")
        assert event.token == "tok_1"
        assert event.succeeded is True
        assert event.payment_id == "pi_123"

    def test_parse_failure_event(self):
        event = MockPaymentClient().parse_event(_event("payment_intent.payment_failed"), "sig")
        assert event.succeeded is False

    def test_invalid_signature(self):
        with pytest.raises(ValueError):
            MockPaymentClient().parse_event(_event("payment_intent.succeeded"), "invalid")

    def test_event_without_token_is_ignored(self):
        payload = json.dumps({"type": "charge.refunded", "data": {"object": {}}}).encode()
        assert MockPaymentClient().parse_event(payload, "sig") is None

    @pytest.mark.parametrize(
        "event_type", ["payment_intent.processing", "payment_intent.created", "charge.refunded"]
    )
    def test_non_settling_event_is_ignored(self, event_type):
        assert MockPaymentClient().parse_event(_event(event_type), "sig") is None

    def test_canceled_event_is_a_failure(self):
        event = MockPaymentClient().parse_event(_event("payment_intent.canceled"), "sig")
        assert event.succeeded is False
