"""Checkout orchestrator -- catalog package -> payment -> credit batch.

A batch is created only after the payment collaborator confirms, and its id
is derived from the intent token, so a retried or duplicated confirmation
can never grant hours twice. Pending payments (PIX, 3-D Secure) wait on a
per-token Event until confirm_payment() or the caller's timeout.

Locking is per intent token; purchases for different tokens never wait on
each other, and no lock is held while charging or writing the ledger.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Set

from hourbank.core.checkout.intents import (
    IntentStatus,
    IntentStore,
    PurchaseIntent,
    PurchaseReceipt,
)
from hourbank.core.checkout.payments import PaymentResult, PaymentStatus
from hourbank.core.credits.ledger import CreditLedger
from hourbank.core.errors import (
    CreditPendingError,
    HourbankError,
    InvalidPurchaseError,
    PaymentFailedError,
    PaymentTimeoutError,
    StaleQuoteError,
)
from hourbank.core.pricing.calculator import quote_matches
from hourbank.core.pricing.catalog import PricingEngine
from hourbank.core.pricing.models import PriceBreakdown

logger = logging.getLogger("hourbank.checkout")

DEFAULT_PAYMENT_TIMEOUT = 30.0
DEFAULT_QUOTE_TTL = 900.0

# Payment outcome not known yet.
IN_FLIGHT = (IntentStatus.CHARGING, IntentStatus.PENDING)
# States a confirmed payment may move to paid from.
_PAYABLE = (IntentStatus.CHARGING, IntentStatus.PENDING, IntentStatus.PAID)


def batch_id_for(token: str) -> str:
    return "bat_" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class CheckoutOrchestrator:
    """Runs purchases end to end. One instance per app."""

    def __init__(
        self,
        pricing: PricingEngine,
        ledger: CreditLedger,
        payments: Any,
        intents: IntentStore,
        *,
        clock: Callable[[], float] = time.time,
        payment_timeout: float = DEFAULT_PAYMENT_TIMEOUT,
        quote_ttl: float = DEFAULT_QUOTE_TTL,
    ) -> None:
        self._pricing = pricing
        self._ledger = ledger
        self._payments = payments
        self._intents = intents
        self._clock = clock
        self._payment_timeout = payment_timeout
        self._quote_ttl = quote_ttl
        # Guards the registries below only, never a charge or a ledger write.
        self._registry_lock = threading.Lock()
        self._token_locks: Dict[str, threading.Lock] = {}
        self._events: Dict[str, threading.Event] = {}
        # Tokens whose charge() call has not returned in this process.
        self._charging: Set[str] = set()

    @property
    def payments(self) -> Any:
        return self._payments

    def get_intent(self, token: str) -> Optional[PurchaseIntent]:
        return self._intents.get(token)

    def _token_lock(self, token: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._token_locks.get(token)
            if lock is None:
                lock = threading.Lock()
                self._token_locks[token] = lock
            return lock

    # ── Purchase ───────────────────────────────────────────────

    def purchase_package(
        self,
        customer_id: str,
        hours: Any,
        payment_method: str,
        intent_token: str,
        quote: Optional[PriceBreakdown] = None,
        timeout: Optional[float] = None,
    ) -> PurchaseReceipt:
        """Buy a catalog package and block until the batch exists.

        Raises PaymentFailedError on decline, PaymentTimeoutError when no
        confirmation arrives in time. Neither leaves a batch behind.
        CreditPendingError means the money was taken and the same call
        should be repeated to record the hours.
        """
        try:
            intent = self.begin_purchase(
                customer_id, hours, payment_method, intent_token, quote=quote
            )
            if intent.status in IN_FLIGHT:
                intent = self._await(intent.token, timeout)
            return self.receipt_for(intent)
        except HourbankError as e:
            logger.warning(
                "purchase failed customer=%s hours=%s token=%s error=%s: %s",
                customer_id, hours, intent_token, e.error_type, e,
            )
            raise

    def begin_purchase(
        self,
        customer_id: str,
        hours: Any,
        payment_method: str,
        intent_token: str,
        quote: Optional[PriceBreakdown] = None,
    ) -> PurchaseIntent:
        """Record the intent and charge, without waiting on a pending payment."""
        if not customer_id:
            raise InvalidPurchaseError("customer_id is required")
        if not intent_token:
            raise InvalidPurchaseError("intent_token is required")
        if not payment_method:
            raise InvalidPurchaseError("payment_method is required")

        package = self._pricing.get_package(hours)
        fresh = self._pricing.compute_price(package.hours)
        if quote is not None:
            self._check_quote(quote, fresh)

        with self._token_lock(intent_token):
            existing = self._intents.get(intent_token)
            resume_paid = False
            if existing is not None:
                if existing.customer_id != customer_id or existing.hours != package.hours:
                    raise InvalidPurchaseError(
                        f"Intent token {intent_token} was already used for a different purchase"
                    )
                if existing.status is IntentStatus.PAID:
                    resume_paid = True
                elif existing.status in (IntentStatus.COMPLETED, IntentStatus.PENDING) or (
                    existing.status is IntentStatus.CHARGING and self._is_charging(intent_token)
                ):
                    logger.info(
                        "purchase %s already %s, not charging again",
                        intent_token, existing.status.value,
                    )
                    return existing
                else:
                    logger.info(
                        "purchase %s was %s, starting a new payment attempt",
                        intent_token, existing.status.value,
                    )
            if not resume_paid:
                intent = self._intents.put(
                    PurchaseIntent(
                        token=intent_token,
                        customer_id=customer_id,
                        hours=package.hours,
                        payment_method=payment_method,
                        amount=fresh.final_price,
                        status=IntentStatus.CHARGING,
                        created_at=existing.created_at if existing else 0.0,
                    )
                )
                with self._registry_lock:
                    self._events[intent_token] = threading.Event()
                    self._charging.add(intent_token)

        if resume_paid:
            logger.info("purchase %s already paid, recording hours", intent_token)
            return self._complete(intent_token, "")

        try:
            result = self._charge(intent)
            if result.status is PaymentStatus.SUCCEEDED:
                return self._complete(intent_token, result.payment_id)
            if result.status is PaymentStatus.FAILED:
                return self._fail(
                    intent_token, result.error or "payment declined", result.payment_id
                )
            logger.info(
                "purchase %s pending confirmation method=%s payment_id=%s",
                intent_token, payment_method, result.payment_id,
            )
            pending = self._intents.transition(
                intent_token,
                IntentStatus.PENDING,
                expect=IntentStatus.CHARGING,
                payment_id=result.payment_id,
            )
            return pending or self._intents.get(intent_token)
        finally:
            with self._registry_lock:
                self._charging.discard(intent_token)

    def _is_charging(self, token: str) -> bool:
        with self._registry_lock:
            return token in self._charging

    def _check_quote(self, quote: PriceBreakdown, fresh: PriceBreakdown) -> None:
        if not quote_matches(quote, fresh):
            raise StaleQuoteError(
                f"Quote of {quote.final_price} for {quote.hours}h no longer matches "
                f"current price {fresh.final_price} (config {fresh.config_version})"
            )
        age = self._clock() - quote.computed_at
        if age > self._quote_ttl:
            raise StaleQuoteError(
                f"Quote is {age:.0f}s old; quotes are valid for {self._quote_ttl:.0f}s"
            )

    def _charge(self, intent: PurchaseIntent) -> PaymentResult:
        try:
            return self._payments.charge(intent.amount, intent.payment_method, intent.token)
        except Exception as e:
            logger.error("payment collaborator error token=%s", intent.token, exc_info=True)
            return PaymentResult(PaymentStatus.FAILED, error=f"payment error: {e}")

    # ── Confirmation ───────────────────────────────────────────

    def confirm_payment(
        self,
        token: str,
        succeeded: bool,
        payment_id: str = "",
        error: str = "",
    ) -> Optional[PurchaseIntent]:
        """Apply a payment outcome reported after charge() returned pending."""
        intent = self._intents.get(token)
        if intent is None:
            logger.warning("confirmation for unknown intent %s ignored", token)
            return None
        if succeeded and intent.status in _PAYABLE:
            return self._complete(token, payment_id)
        if not succeeded and intent.status in IN_FLIGHT:
            return self._fail(token, error or "payment failed", payment_id)
        logger.warning(
            "late confirmation for %s intent %s ignored (succeeded=%s payment_id=%s)",
            intent.status.value, token, succeeded, payment_id,
        )
        return intent

    def _complete(self, token: str, payment_id: str) -> Optional[PurchaseIntent]:
        """Record the hours for a paid intent. Repeatable: the batch id comes from the token."""
        current = self._intents.get(token)
        if current is None:
            return None
        try:
            paid = self._intents.transition(
                token,
                IntentStatus.PAID,
                expect=_PAYABLE,
                payment_id=payment_id or current.payment_id,
            )
            if paid is None:
                return self._intents.get(token)
            batch = self._ledger.create_batch(
                paid.customer_id,
                paid.hours,
                batch_id=batch_id_for(token),
                purchase_token=token,
            )
            done = self._intents.transition(
                token,
                IntentStatus.COMPLETED,
                expect=IntentStatus.PAID,
                batch_id=batch.id,
            )
        except Exception as e:
            logger.error(
                "purchase %s paid but hours not recorded customer=%s hours=%s payment_id=%s",
                token, current.customer_id, current.hours, payment_id or current.payment_id,
                exc_info=True,
            )
            raise CreditPendingError(
                f"Payment for {token} was received but the hours could not be recorded; "
                f"repeat the purchase with the same intent token",
                token=token,
            ) from e
        finally:
            self._release(token)
        logger.info(
            "purchase %s completed customer=%s hours=%s batch=%s",
            token, paid.customer_id, paid.hours, batch.id,
        )
        return done or self._intents.get(token)

    def _fail(self, token: str, error: str, payment_id: str = "") -> Optional[PurchaseIntent]:
        current = self._intents.get(token)
        done = self._intents.transition(
            token,
            IntentStatus.FAILED,
            expect=IN_FLIGHT,
            error=error,
            payment_id=payment_id or (current.payment_id if current else ""),
        )
        self._release(token)
        if done is not None:
            logger.info("purchase %s failed: %s", token, error)
        return done or self._intents.get(token)

    def _await(self, token: str, timeout: Optional[float]) -> PurchaseIntent:
        with self._registry_lock:
            event = self._events.setdefault(token, threading.Event())
        intent = self._intents.get(token)
        if intent is not None and intent.status in IN_FLIGHT:
            event.wait(self._payment_timeout if timeout is None else timeout)
        # Only a pending payment expires; a charge still in flight is left alone.
        expired = self._intents.transition(
            token,
            IntentStatus.EXPIRED,
            expect=IntentStatus.PENDING,
            error="payment confirmation timed out",
        )
        if expired is not None:
            self._release(token)
            logger.warning("purchase %s expired waiting for payment", token)
            return expired
        return self._intents.get(token)

    def _release(self, token: str) -> None:
        with self._registry_lock:
            event = self._events.pop(token, None)
        if event is not None:
            event.set()

    def receipt_for(self, intent: PurchaseIntent) -> PurchaseReceipt:
        if intent.status is IntentStatus.COMPLETED:
            return PurchaseReceipt.from_intent(intent)
        if intent.status is IntentStatus.EXPIRED:
            raise PaymentTimeoutError(
                f"No payment confirmation for {intent.token}; no hours were credited",
                token=intent.token,
            )
        if intent.status is IntentStatus.FAILED:
            raise PaymentFailedError(
                f"Payment failed for {intent.token}: {intent.error}", token=intent.token
            )
        if intent.status is IntentStatus.PAID:
            raise CreditPendingError(
                f"Payment for {intent.token} was received but the hours are not recorded yet",
                token=intent.token,
            )
        raise PaymentTimeoutError(
            f"Payment for {intent.token} is still in progress", token=intent.token
        )
