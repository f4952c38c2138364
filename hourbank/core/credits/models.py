"""Credit data models -- batches, balances, redemption results.

Batches are frozen: the ledger publishes a new instance (version + 1) for
every mutation, which is what its compare-and-swap commit checks against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

BATCH_TTL_SECONDS = 365 * 24 * 60 * 60

ZERO = Decimal("0")


class BatchStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CreditBatch:
    """One purchase's worth of prepaid hours, with its own expiry clock."""

    id: str
    customer_id: str
    hours_purchased: Decimal
    hours_remaining: Decimal
    purchased_at: float
    expires_at: float
    version: int = 0
    purchase_token: Optional[str] = None
    archived_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def status(self, now: float) -> BatchStatus:
        if self.is_expired(now):
            return BatchStatus.EXPIRED
        if self.hours_remaining <= 0:
            return BatchStatus.EXHAUSTED
        return BatchStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "customer_id": self.customer_id,
            "hours_purchased": str(self.hours_purchased),
            "hours_remaining": str(self.hours_remaining),
            "purchased_at": self.purchased_at,
            "expires_at": self.expires_at,
            "version": self.version,
        }
        if self.purchase_token is not None:
            d["purchase_token"] = self.purchase_token
        if self.archived_at is not None:
            d["archived_at"] = self.archived_at
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CreditBatch":
        return cls(
            id=d["id"],
            customer_id=d["customer_id"],
            hours_purchased=Decimal(str(d["hours_purchased"])),
            hours_remaining=Decimal(str(d["hours_remaining"])),
            purchased_at=float(d["purchased_at"]),
            expires_at=float(d["expires_at"]),
            version=int(d.get("version", 0)),
            purchase_token=d.get("purchase_token"),
            archived_at=d.get("archived_at"),
        )


@dataclass(frozen=True)
class CustomerCredit:
    """Derived view over a customer's non-expired batches."""

    customer_id: str
    total_hours: Decimal = ZERO
    used_hours: Decimal = ZERO
    available_hours: Decimal = ZERO
    active_batches: int = 0
    next_expiry: Optional[float] = None

    @property
    def has_credit(self) -> bool:
        return self.available_hours > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "total_hours": str(self.total_hours),
            "used_hours": str(self.used_hours),
            "available_hours": str(self.available_hours),
            "has_credit": self.has_credit,
            "active_batches": self.active_batches,
            "next_expiry": self.next_expiry,
        }


@dataclass(frozen=True)
class BatchDebit:
    batch_id: str
    hours: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"batch_id": self.batch_id, "hours": str(self.hours)}


@dataclass(frozen=True)
class RedemptionResult:
    """Outcome of a successful redeem. fee_waived tells the booking side to drop the service fee."""

    customer_id: str
    hours_redeemed: Decimal
    fee_waived: bool
    debits: Tuple[BatchDebit, ...] = field(default_factory=tuple)
    available_hours: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "hours_redeemed": str(self.hours_redeemed),
            "fee_waived": self.fee_waived,
            "debits": [d.to_dict() for d in self.debits],
            "available_hours": str(self.available_hours),
        }
