"""Pricing value objects -- characteristics, breakdowns, packages.

All models are frozen dataclasses with to_dict() for serialization.
Money and hours are Decimal; to_dict() renders them as strings so no
precision is lost on the wire.
(API Pydantic models live in core/api/models.py.)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from hourbank.core.errors import InvalidCharacteristicsError


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class JobCharacteristics:
    """What the job looks like. Feeds the price multiplier."""

    environments: int = 1
    people: int = 1
    complexity: Complexity = Complexity.LOW

    def __post_init__(self) -> None:
        if isinstance(self.environments, bool) or not isinstance(self.environments, int):
            raise InvalidCharacteristicsError("environments must be an integer")
        if isinstance(self.people, bool) or not isinstance(self.people, int):
            raise InvalidCharacteristicsError("people must be an integer")
        if self.environments < 1:
            raise InvalidCharacteristicsError(
                f"environments must be >= 1, got {self.environments}"
            )
        if self.people < 1:
            raise InvalidCharacteristicsError(f"people must be >= 1, got {self.people}")
        if not isinstance(self.complexity, Complexity):
            try:
                object.__setattr__(self, "complexity", Complexity(self.complexity))
            except ValueError:
                raise InvalidCharacteristicsError(
                    f"complexity must be one of low, medium, high; got {self.complexity!r}"
                )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environments": self.environments,
            "people": self.people,
            "complexity": self.complexity.value,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "JobCharacteristics":
        d = d or {}
        return cls(
            environments=d.get("environments", 1),
            people=d.get("people", 1),
            complexity=d.get("complexity", Complexity.LOW),
        )


DEFAULT_CHARACTERISTICS = JobCharacteristics()


@dataclass(frozen=True)
class PriceBreakdown:
    """Itemized price for one hour quantity.

    Fee components keep full precision. Only final_price is rounded, once,
    to currency precision.
    """

    hours: Decimal
    price_per_hour: Decimal
    multiplier: Decimal
    base_price: Decimal
    service_fee: Decimal
    post_work_fee: Decimal
    organization_fee: Decimal
    product_fee: Decimal
    final_price: Decimal
    tier: str
    currency: str = "BRL"
    characteristics: JobCharacteristics = DEFAULT_CHARACTERISTICS
    config_version: str = ""
    computed_at: float = 0.0

    @property
    def components_total(self) -> Decimal:
        return (
            self.base_price
            + self.service_fee
            + self.post_work_fee
            + self.organization_fee
            + self.product_fee
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hours": str(self.hours),
            "price_per_hour": str(self.price_per_hour),
            "multiplier": str(self.multiplier),
            "base_price": str(self.base_price),
            "service_fee": str(self.service_fee),
            "post_work_fee": str(self.post_work_fee),
            "organization_fee": str(self.organization_fee),
            "product_fee": str(self.product_fee),
            "final_price": str(self.final_price),
            "tier": self.tier,
            "currency": self.currency,
            "characteristics": self.characteristics.to_dict(),
            "config_version": self.config_version,
            "computed_at": self.computed_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PriceBreakdown":
        return cls(
            hours=Decimal(str(d["hours"])),
            price_per_hour=Decimal(str(d["price_per_hour"])),
            multiplier=Decimal(str(d.get("multiplier", "1"))),
            base_price=Decimal(str(d["base_price"])),
            service_fee=Decimal(str(d["service_fee"])),
            post_work_fee=Decimal(str(d["post_work_fee"])),
            organization_fee=Decimal(str(d["organization_fee"])),
            product_fee=Decimal(str(d["product_fee"])),
            final_price=Decimal(str(d["final_price"])),
            tier=d.get("tier", ""),
            currency=d.get("currency", "BRL"),
            characteristics=JobCharacteristics.from_dict(d.get("characteristics")),
            config_version=d.get("config_version", ""),
            computed_at=float(d.get("computed_at", 0.0)),
        )


@dataclass(frozen=True)
class HourPackage:
    """A purchasable catalog entry, priced by the calculator at load time."""

    hours: Decimal
    price_per_hour: Decimal
    total_price: Decimal
    description: str = ""
    breakdown: Optional[PriceBreakdown] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "hours": str(self.hours),
            "price_per_hour": str(self.price_per_hour),
            "total_price": str(self.total_price),
            "description": self.description,
        }
        if self.breakdown is not None:
            d["breakdown"] = self.breakdown.to_dict()
        return d


@dataclass(frozen=True)
class BookingEstimate:
    """Price of a booking, with the prepaid-credit discount when it applies."""

    breakdown: PriceBreakdown
    paid_with_credit: bool
    discounted_price: Decimal
    discount_value: Decimal
    available_hours: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "breakdown": self.breakdown.to_dict(),
            "final_price": str(self.breakdown.final_price),
            "paid_with_credit": self.paid_with_credit,
            "discounted_price": str(self.discounted_price),
            "discount_value": str(self.discount_value),
            "available_hours": str(self.available_hours),
        }
