"""Payment collaborator boundary -- charge a purchase, parse confirmation events.

Design principles:
  - Never import `stripe` if HOURBANK_STRIPE_ENABLED != 1
  - All gateway calls go through a PaymentClient (mockable in tests)
  - Config loaded from env vars
  - The engine never moves money itself; it only reads PaymentResult
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger("hourbank.checkout")

# Methods the mock recognizes; anything else behaves like a card.
PENDING_METHODS = ("pix",)
FAILING_METHODS = ("fail", "declined")

SUCCEEDED_EVENT = "payment_intent.succeeded"
FAILED_EVENTS = ("payment_intent.payment_failed", "payment_intent.canceled")


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentResult:
    status: PaymentStatus
    payment_id: str = ""
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "payment_id": self.payment_id,
            "error": self.error,
        }


@dataclass(frozen=True)
class PaymentEvent:
    """Normalized payment confirmation, whatever gateway sent it."""

    token: str
    succeeded: bool
    payment_id: str = ""
    event_type: str = ""


@dataclass(frozen=True)
class StripeConfig:
    """Stripe configuration from environment."""

    enabled: bool = False
    secret_key: str = ""
    webhook_secret: str = ""
    currency: str = "brl"

    @classmethod
    def from_env(cls) -> "StripeConfig":
        from hourbank.core.api.settings import _bool_env

        return cls(
            enabled=_bool_env("HOURBANK_STRIPE_ENABLED", False),
            secret_key=os.environ.get("STRIPE_SECRET_KEY", ""),
            webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
            currency=os.environ.get("HOURBANK_STRIPE_CURRENCY", "brl"),
        )

    def validate(self) -> Optional[str]:
        """Return error message if config is incomplete, else None."""
        if not self.enabled:
            return None
        missing = []
        if not self.secret_key:
            missing.append("STRIPE_SECRET_KEY")
        if not self.webhook_secret:
            missing.append("STRIPE_WEBHOOK_SECRET")
        if missing:
            return f"Stripe enabled but missing env vars: {', '.join(missing)}"
        return None


def _event_for(event_type: str, token: str, payment_id: str) -> Optional[PaymentEvent]:
    """Map a gateway event type to an outcome. None for types that settle nothing."""
    if event_type == SUCCEEDED_EVENT:
        return PaymentEvent(token, True, payment_id, event_type)
    if event_type in FAILED_EVENTS:
        return PaymentEvent(token, False, payment_id, event_type)
    return None


def _to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class StripePaymentClient:
    """Charges through Stripe PaymentIntents.

    The intent token travels as the Stripe idempotency key and in metadata,
    so the webhook can route the confirmation back to the waiting purchase.
    """

    def __init__(self, config: StripeConfig) -> None:
        if not config.enabled:
            raise RuntimeError("Stripe is disabled (HOURBANK_STRIPE_ENABLED != 1)")
        import stripe

        stripe.api_key = config.secret_key
        self._stripe: Any = stripe
        self._config = config

    def charge(self, amount: Decimal, method: str, token: str) -> PaymentResult:
        try:
            intent = self._stripe.PaymentIntent.create(
                amount=_to_minor_units(amount),
                currency=self._config.currency,
                payment_method_types=[method],
                metadata={"intent_token": token},
                idempotency_key=token,
            )
        except self._stripe.error.StripeError as e:
            logger.warning("stripe charge failed token=%s: %s", token, e)
            return PaymentResult(PaymentStatus.FAILED, error=str(e))

        if intent.status == "succeeded":
            return PaymentResult(PaymentStatus.SUCCEEDED, payment_id=intent.id)
        if intent.status == "canceled":
            return PaymentResult(
                PaymentStatus.FAILED, payment_id=intent.id, error="payment canceled"
            )
        return PaymentResult(PaymentStatus.PENDING, payment_id=intent.id)

    def parse_event(self, payload: bytes, signature: str) -> Optional[PaymentEvent]:
        """Verify the webhook signature; None for events we do not act on."""
        event = self._stripe.Webhook.construct_event(
            payload, signature, self._config.webhook_secret
        )
        obj = event.data.object
        token = (obj.get("metadata") or {}).get("intent_token", "")
        if not token:
            return None
        return _event_for(event.type, token, obj.get("id", ""))


class MockPaymentClient:
    """Deterministic gateway for tests and local development.

    "card" (and anything unrecognized) succeeds, "pix" stays pending until
    confirmed, "fail"/"declined" is refused.
    """

    def __init__(self, config: Optional[StripeConfig] = None) -> None:
        self._config = config
        self._counter = 0
        self.charges: list = []

    def charge(self, amount: Decimal, method: str, token: str) -> PaymentResult:
        self._counter += 1
        payment_id = f"pay_mock_{self._counter:04d}"
        self.charges.append({"amount": amount, "method": method, "token": token})
        if method in FAILING_METHODS:
            return PaymentResult(PaymentStatus.FAILED, payment_id, "card declined")
        if method in PENDING_METHODS:
            return PaymentResult(PaymentStatus.PENDING, payment_id)
        return PaymentResult(PaymentStatus.SUCCEEDED, payment_id)

    def parse_event(self, payload: bytes, signature: str) -> Optional[PaymentEvent]:
        """Parse event from raw JSON payload. Only "invalid" is rejected as a signature."""
        if signature == "invalid":
            raise ValueError("Invalid signature")
        data = json.loads(payload)
        obj = data.get("data", {}).get("object", {})
        token = (obj.get("metadata") or {}).get("intent_token", "")
        if not token:
            return None
        return _event_for(data.get("type", ""), token, obj.get("id", ""))


def build_payment_client(config: Optional[StripeConfig] = None):
    """Stripe when enabled and configured, otherwise the mock."""
    config = config or StripeConfig.from_env()
    if config.enabled:
        problem = config.validate()
        if problem:
            raise RuntimeError(problem)
        return StripePaymentClient(config)
    return MockPaymentClient(config)
