"""hourbank error hierarchy.

Every error carries a stable ``error_type`` (used in the API envelope) and
the HTTP status the API answers with. Validation errors are never retried;
business-rule errors are expected; payment and concurrency errors leave no
partial state behind.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional


class HourbankError(Exception):
    """Base error for all hourbank operations."""

    error_type = "INTERNAL_ERROR"
    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.error_type, "message": str(self)}


# ── Validation ──────────────────────────────────────────────────


class ValidationError(HourbankError):
    """Caller input problem."""

    error_type = "VALIDATION_ERROR"
    status_code = 422


class InvalidHoursError(ValidationError):
    """Hour quantity outside the bookable range or not a number."""

    error_type = "INVALID_HOURS"


class InvalidCharacteristicsError(ValidationError):
    """Job characteristics out of range (environments, people, complexity)."""

    error_type = "INVALID_CHARACTERISTICS"


class InvalidPurchaseError(ValidationError):
    """Purchase request that can never succeed as given."""

    error_type = "INVALID_PURCHASE"


class StaleQuoteError(InvalidPurchaseError):
    """Caller-supplied quote no longer matches current pricing."""

    error_type = "STALE_QUOTE"


class PricingConfigError(ValidationError):
    """Rate table or multiplier configuration is inconsistent."""

    error_type = "PRICING_CONFIG_ERROR"


# ── Business rules ──────────────────────────────────────────────


class InsufficientCreditError(HourbankError):
    """Customer does not hold enough non-expired prepaid hours."""

    error_type = "INSUFFICIENT_CREDIT"
    status_code = 409

    def __init__(
        self,
        customer_id: str,
        requested: Decimal,
        available: Decimal,
    ) -> None:
        self.customer_id = customer_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Customer {customer_id} requested {requested}h "
            f"but only {available}h are available."
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["requested_hours"] = str(self.requested)
        d["available_hours"] = str(self.available)
        return d


# ── External dependency ─────────────────────────────────────────


class PaymentFailedError(HourbankError):
    """Payment collaborator declined or errored."""

    error_type = "PAYMENT_FAILED"
    status_code = 402

    def __init__(self, message: str, token: Optional[str] = None) -> None:
        self.token = token
        super().__init__(message)


class PaymentTimeoutError(PaymentFailedError):
    """No payment confirmation arrived before the caller's deadline."""

    error_type = "PAYMENT_TIMEOUT"
    status_code = 504


class CreditPendingError(HourbankError):
    """Payment was taken but the hours could not be recorded yet.

    The intent stays ``paid``; repeating the purchase with the same token
    records the hours without charging again.
    """

    error_type = "CREDIT_PENDING"
    status_code = 503

    def __init__(self, message: str, token: Optional[str] = None) -> None:
        self.token = token
        super().__init__(message)


# ── Concurrency ─────────────────────────────────────────────────


class ConcurrentUpdateError(HourbankError):
    """Optimistic-lock retries exhausted."""

    error_type = "CONCURRENT_UPDATE"
    status_code = 409
