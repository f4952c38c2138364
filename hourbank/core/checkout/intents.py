"""Purchase intent store -- local JSONL persistence.

One record per client-supplied intent token. The token is what makes a
purchase idempotent: the orchestrator looks it up before charging.
Same persistence pattern as the credit ledger (last line wins per token).

Lifecycle:
    charging -> paid | pending | failed
    pending  -> paid | failed | expired
    paid     -> completed
A charging intent has a gateway call in flight and is never expired. A paid
intent holds money whose hours are not recorded yet; retrying the purchase
or re-sending the confirmation finishes it without a new charge.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

from hourbank.core.io import append_jsonl, iter_jsonl

logger = logging.getLogger("hourbank.checkout")


class IntentStatus(str, Enum):
    CHARGING = "charging"
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class PurchaseIntent:
    token: str
    customer_id: str
    hours: Decimal
    payment_method: str
    amount: Decimal
    status: IntentStatus = IntentStatus.PENDING
    payment_id: str = ""
    batch_id: str = ""
    error: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "customer_id": self.customer_id,
            "hours": str(self.hours),
            "payment_method": self.payment_method,
            "amount": str(self.amount),
            "status": self.status.value,
            "payment_id": self.payment_id,
            "batch_id": self.batch_id,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PurchaseIntent":
        return cls(
            token=d["token"],
            customer_id=d["customer_id"],
            hours=Decimal(str(d["hours"])),
            payment_method=d.get("payment_method", ""),
            amount=Decimal(str(d.get("amount", "0"))),
            status=IntentStatus(d.get("status", "pending")),
            payment_id=d.get("payment_id", ""),
            batch_id=d.get("batch_id", ""),
            error=d.get("error", ""),
            created_at=d.get("created_at", 0.0),
            updated_at=d.get("updated_at", 0.0),
        )


@dataclass(frozen=True)
class PurchaseReceipt:
    """What a purchase call returns, whether it charged now or earlier."""

    token: str
    status: IntentStatus
    customer_id: str
    hours: Decimal
    final_price: Decimal
    batch_id: str = ""
    payment_id: str = ""

    @classmethod
    def from_intent(cls, intent: PurchaseIntent) -> "PurchaseReceipt":
        return cls(
            token=intent.token,
            status=intent.status,
            customer_id=intent.customer_id,
            hours=intent.hours,
            final_price=intent.amount,
            batch_id=intent.batch_id,
            payment_id=intent.payment_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "status": self.status.value,
            "customer_id": self.customer_id,
            "hours": str(self.hours),
            "final_price": str(self.final_price),
            "batch_id": self.batch_id,
            "payment_id": self.payment_id,
        }


class IntentStore:
    """Thread-safe in-memory intent store with optional JSONL persistence."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        # Key: intent token
        self._intents: Dict[str, PurchaseIntent] = {}
        self._persist_path: Optional[str] = None

    def configure_persistence(self, path: Optional[str]) -> None:
        with self._lock:
            self._persist_path = path
        if path:
            self._replay(path)

    def _replay(self, path: str) -> None:
        p = Path(path)
        if not p.exists():
            return
        count = 0
        skipped = 0

        def bad_line(lineno: int, error: str) -> None:
            nonlocal skipped
            skipped += 1
            logger.error("intent_store: skipping unreadable line %d of %s: %s", lineno, path, error)

        for d in iter_jsonl(p, on_error=bad_line):
            try:
                intent = PurchaseIntent.from_dict(d)
            except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
                skipped += 1
                logger.error("intent_store: skipping malformed record in %s: %s", path, e)
                continue
            with self._lock:
                self._intents[intent.token] = intent
            count += 1
        logger.info(
            "intent_store: replayed %d records from %s (%d skipped)", count, path, skipped
        )

    def _persist(self, intent: PurchaseIntent) -> None:
        path = self._persist_path
        if not path:
            return
        append_jsonl(path, intent.to_dict())

    def get(self, token: str) -> Optional[PurchaseIntent]:
        with self._lock:
            return self._intents.get(token)

    def put(self, intent: PurchaseIntent) -> PurchaseIntent:
        """Record a new intent (or a retry replacing a failed/expired one)."""
        now = self._clock()
        intent = dataclasses.replace(
            intent,
            created_at=intent.created_at or now,
            updated_at=now,
        )
        with self._lock:
            self._persist(intent)
            self._intents[intent.token] = intent
        return intent

    def transition(
        self,
        token: str,
        status: IntentStatus,
        *,
        expect: Union[IntentStatus, Iterable[IntentStatus]] = IntentStatus.PENDING,
        **changes: Any,
    ) -> Optional[PurchaseIntent]:
        """Apply changes to an intent currently in `expect`. None if it is not."""
        allowed = (expect,) if isinstance(expect, IntentStatus) else tuple(expect)
        with self._lock:
            current = self._intents.get(token)
            if current is None or current.status not in allowed:
                return None
            updated = dataclasses.replace(
                current, status=status, updated_at=self._clock(), **changes
            )
            self._persist(updated)
            self._intents[token] = updated
        return updated

    def reset(self) -> None:
        with self._lock:
            self._intents.clear()
            self._persist_path = None


intent_store = IntentStore()
