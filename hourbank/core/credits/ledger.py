"""CreditLedger -- per-customer prepaid-hour batches with FIFO redemption.

Same persistence pattern as the other hourbank stores:
  - configure_persistence(path) -> _replay(path) on boot
  - Append-only JSONL, one line per committed mutation (batch snapshots,
    last line wins per batch id)
  - reset() for test isolation

Concurrency: every write is serialized per customer, never globally.
redeem() plans against the batches it read and commits with
compare-and-swap on each touched batch's version; a lost race is retried
up to max_retries times before ConcurrentUpdateError.

The ledger is the only writer of hours_remaining. Expired and exhausted
batches are kept for audit; archive_expired() only stamps them.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from hourbank.core.credits.models import (
    BATCH_TTL_SECONDS,
    ZERO,
    BatchDebit,
    CreditBatch,
    CustomerCredit,
    RedemptionResult,
)
from hourbank.core.errors import (
    ConcurrentUpdateError,
    HourbankError,
    InsufficientCreditError,
    InvalidHoursError,
    InvalidPurchaseError,
)
from hourbank.core.io import append_jsonl, iter_jsonl
from hourbank.core.pricing.calculator import parse_hours

logger = logging.getLogger("hourbank.ledger")

DEFAULT_MAX_RETRIES = 5


class CreditLedger:
    """Thread-safe prepaid-hour ledger with optional JSONL persistence."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self._clock = clock
        self._max_retries = max_retries
        # Guards only the lock registry and batch-id index, never a whole operation.
        self._registry_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._customer_locks: Dict[str, threading.Lock] = {}
        # Key: customer_id -> batches in FIFO order. Replaced, never mutated in place.
        self._batches: Dict[str, Tuple[CreditBatch, ...]] = {}
        self._owner: Dict[str, str] = {}
        self._persist_path: Optional[str] = None

    # ── Configuration ──────────────────────────────────────────

    def configure(
        self,
        *,
        clock: Optional[Callable[[], float]] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        if clock is not None:
            self._clock = clock
        if max_retries is not None:
            self._max_retries = max(1, max_retries)

    def configure_persistence(self, path: Optional[str]) -> None:
        with self._persist_lock:
            self._persist_path = path
        if path:
            self._replay(path)

    def _replay(self, path: str) -> None:
        """Rebuild state from the JSONL log. Unreadable records are skipped and logged."""
        p = Path(path)
        if not p.exists():
            return
        latest: Dict[str, CreditBatch] = {}
        order: List[str] = []
        skipped = 0

        def bad_line(lineno: int, error: str) -> None:
            nonlocal skipped
            skipped += 1
            logger.error("ledger: skipping unreadable line %d of %s: %s", lineno, path, error)

        for row in iter_jsonl(p, on_error=bad_line):
            try:
                batches = [CreditBatch.from_dict(d) for d in row.get("batches", [])]
            except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
                skipped += 1
                logger.error("ledger: skipping malformed record in %s: %s", path, e)
                continue
            for batch in batches:
                if batch.id not in latest:
                    order.append(batch.id)
                latest[batch.id] = batch

        by_customer: Dict[str, List[CreditBatch]] = {}
        for batch_id in order:
            batch = latest[batch_id]
            by_customer.setdefault(batch.customer_id, []).append(batch)
        with self._registry_lock:
            for customer_id, batches in by_customer.items():
                self._batches[customer_id] = _fifo(batches)
                for b in batches:
                    self._owner[b.id] = customer_id
        logger.info(
            "ledger: replayed %d batches for %d customers from %s (%d records skipped)",
            len(latest), len(by_customer), path, skipped,
        )

    def _persist(self, op: str, batches: List[CreditBatch]) -> None:
        """Write one mutation record. Raises on I/O failure so nothing is published."""
        with self._persist_lock:
            path = self._persist_path
            if not path:
                return
            try:
                append_jsonl(path, {
                    "ts": self._clock(),
                    "op": op,
                    "batches": [b.to_dict() for b in batches],
                })
            except OSError:
                logger.error("ledger: persist failed for op=%s", op, exc_info=True)
                raise

    def _customer_lock(self, customer_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._customer_locks.get(customer_id)
            if lock is None:
                lock = threading.Lock()
                self._customer_locks[customer_id] = lock
            return lock

    # ── Reads ──────────────────────────────────────────────────

    def _read(self, customer_id: str) -> Tuple[CreditBatch, ...]:
        return self._batches.get(customer_id, ())

    def get_balance(self, customer_id: str, now: Optional[float] = None) -> CustomerCredit:
        """Fold the customer's non-expired batches into a balance."""
        now = self._clock() if now is None else now
        live = [b for b in self._read(customer_id) if not b.is_expired(now)]
        if not live:
            return CustomerCredit(customer_id=customer_id)
        total = sum((b.hours_purchased for b in live), ZERO)
        available = sum((b.hours_remaining for b in live), ZERO)
        with_credit = [b for b in live if b.hours_remaining > 0]
        return CustomerCredit(
            customer_id=customer_id,
            total_hours=total,
            used_hours=total - available,
            available_hours=available,
            active_batches=len(with_credit),
            next_expiry=min((b.expires_at for b in with_credit), default=None),
        )

    def get_batch(self, batch_id: str) -> Optional[CreditBatch]:
        customer_id = self._owner.get(batch_id)
        if customer_id is None:
            return None
        for b in self._read(customer_id):
            if b.id == batch_id:
                return b
        return None

    def list_batches(
        self,
        customer_id: str,
        *,
        include_archived: bool = True,
        now: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Audit view: every batch with its derived status, oldest first."""
        now = self._clock() if now is None else now
        out = []
        for b in self._read(customer_id):
            if not include_archived and b.archived_at is not None:
                continue
            d = b.to_dict()
            d["status"] = b.status(now).value
            out.append(d)
        return out

    def customers(self) -> List[str]:
        return list(self._batches.keys())

    # ── Writes ─────────────────────────────────────────────────

    def create_batch(
        self,
        customer_id: str,
        hours_purchased: Any,
        *,
        batch_id: Optional[str] = None,
        purchase_token: Optional[str] = None,
    ) -> CreditBatch:
        """Add a batch expiring BATCH_TTL_SECONDS from now.

        Idempotent on batch_id: an id that already exists is returned as is.
        """
        if not customer_id:
            raise InvalidPurchaseError("customer_id is required")
        try:
            hours = parse_hours(hours_purchased)
        except InvalidHoursError as e:
            raise InvalidPurchaseError(str(e))
        if hours <= 0:
            raise InvalidPurchaseError(
                f"hours_purchased must be greater than 0, got {hours}"
            )

        with self._customer_lock(customer_id):
            if batch_id is not None:
                existing = self.get_batch(batch_id)
                if existing is not None:
                    if existing.customer_id != customer_id:
                        raise InvalidPurchaseError(
                            f"Batch {batch_id} belongs to another customer"
                        )
                    logger.info("ledger: batch %s already exists, not re-created", batch_id)
                    return existing

            now = self._clock()
            batch = CreditBatch(
                id=batch_id or f"bat_{uuid.uuid4().hex[:16]}",
                customer_id=customer_id,
                hours_purchased=hours,
                hours_remaining=hours,
                purchased_at=now,
                expires_at=now + BATCH_TTL_SECONDS,
                purchase_token=purchase_token,
            )
            self._persist("create", [batch])
            self._batches[customer_id] = _fifo(list(self._read(customer_id)) + [batch])
            with self._registry_lock:
                self._owner[batch.id] = customer_id

        logger.info(
            "ledger: created batch %s customer=%s hours=%s expires_at=%.0f",
            batch.id, customer_id, hours, batch.expires_at,
        )
        return batch

    def redeem(self, customer_id: str, hours_requested: Any) -> RedemptionResult:
        """Consume hours from the oldest active batches. All or nothing."""
        try:
            return self._redeem(customer_id, hours_requested)
        except HourbankError as e:
            logger.warning(
                "ledger: redeem failed customer=%s hours=%s error=%s: %s",
                customer_id, hours_requested, e.error_type, e,
            )
            raise

    def _redeem(self, customer_id: str, hours_requested: Any) -> RedemptionResult:
        qty = parse_hours(hours_requested)
        if qty <= 0:
            raise InvalidHoursError(f"hours_requested must be greater than 0, got {qty}")

        for attempt in range(1, self._max_retries + 1):
            now = self._clock()
            observed = self._read(customer_id)
            debits, updated = _plan_fifo(customer_id, observed, qty, now)
            if self._commit(customer_id, updated):
                available = self.get_balance(customer_id, now=now).available_hours
                logger.info(
                    "ledger: redeemed customer=%s hours=%s batches=%s available=%s",
                    customer_id, qty, [d.batch_id for d in debits], available,
                )
                return RedemptionResult(
                    customer_id=customer_id,
                    hours_redeemed=qty,
                    fee_waived=True,
                    debits=tuple(debits),
                    available_hours=available,
                )
            logger.debug(
                "ledger: redeem conflict customer=%s attempt=%d/%d",
                customer_id, attempt, self._max_retries,
            )

        raise ConcurrentUpdateError(
            f"Could not redeem {qty}h for customer {customer_id} after "
            f"{self._max_retries} attempts; concurrent updates kept winning."
        )

    def _commit(self, customer_id: str, updated: List[CreditBatch]) -> bool:
        """Compare-and-swap: publish updated batches only if none changed since read."""
        with self._customer_lock(customer_id):
            current = {b.id: b for b in self._read(customer_id)}
            for new in updated:
                cur = current.get(new.id)
                if cur is None or cur.version != new.version - 1:
                    return False
            self._persist("redeem", updated)
            current.update({b.id: b for b in updated})
            self._batches[customer_id] = _fifo(list(current.values()))
        return True

    def archive_expired(self, now: Optional[float] = None) -> int:
        """Stamp archived_at on expired or exhausted batches. Returns how many."""
        now = self._clock() if now is None else now
        archived = 0
        for customer_id in self.customers():
            with self._customer_lock(customer_id):
                batches = self._read(customer_id)
                stamped = [
                    dataclasses.replace(b, archived_at=now, version=b.version + 1)
                    for b in batches
                    if b.archived_at is None
                    and (b.is_expired(now) or b.hours_remaining <= 0)
                ]
                if not stamped:
                    continue
                self._persist("archive", stamped)
                by_id = {b.id: b for b in batches}
                by_id.update({b.id: b for b in stamped})
                self._batches[customer_id] = _fifo(list(by_id.values()))
                archived += len(stamped)
        if archived:
            logger.info("ledger: archived %d expired/exhausted batches", archived)
        return archived

    def reset(self) -> None:
        with self._registry_lock:
            self._batches.clear()
            self._owner.clear()
            self._customer_locks.clear()
        with self._persist_lock:
            self._persist_path = None


def _fifo(batches: List[CreditBatch]) -> Tuple[CreditBatch, ...]:
    """Oldest purchase first; stable, so equal timestamps keep insertion order."""
    return tuple(sorted(batches, key=lambda b: b.purchased_at))


def _plan_fifo(
    customer_id: str,
    batches: Tuple[CreditBatch, ...],
    qty: Decimal,
    now: float,
) -> Tuple[List[BatchDebit], List[CreditBatch]]:
    """Work out which batches to debit. Pure; raises InsufficientCreditError."""
    active = [b for b in batches if not b.is_expired(now) and b.hours_remaining > 0]
    available = sum((b.hours_remaining for b in active), ZERO)
    if available < qty:
        raise InsufficientCreditError(customer_id, qty, available)

    debits: List[BatchDebit] = []
    updated: List[CreditBatch] = []
    remaining = qty
    for b in active:
        if remaining <= 0:
            break
        take = min(b.hours_remaining, remaining)
        remaining -= take
        debits.append(BatchDebit(batch_id=b.id, hours=take))
        updated.append(
            dataclasses.replace(
                b,
                hours_remaining=b.hours_remaining - take,
                version=b.version + 1,
            )
        )
    return debits, updated


credit_ledger = CreditLedger()
