"""Price calculator -- hours + job characteristics -> itemized PriceBreakdown.

Pure function of its inputs and one PricingConfig snapshot:
  base  = hours x tier rate x characteristics multiplier
  fees  = percentages of base (service, post-work, organization) + flat product fee
  final = sum of the five components, rounded half-up to 0.01 once
"""

from __future__ import annotations

import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Union

from hourbank.core.errors import InvalidHoursError
from hourbank.core.pricing.models import (
    DEFAULT_CHARACTERISTICS,
    BookingEstimate,
    JobCharacteristics,
    PriceBreakdown,
)
from hourbank.core.pricing.rates import PricingConfig

CENT = Decimal("0.01")

HoursLike = Union[int, float, str, Decimal]
CharacteristicsLike = Union[JobCharacteristics, Dict[str, Any], None]


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_hours(value: HoursLike) -> Decimal:
    """Coerce an hour quantity to a finite Decimal or raise InvalidHoursError."""
    if isinstance(value, bool):
        raise InvalidHoursError(f"Hours must be a number, got {value!r}")
    try:
        hours = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidHoursError(f"Hours must be a number, got {value!r}")
    if not hours.is_finite():
        raise InvalidHoursError(f"Hours must be finite, got {value!r}")
    return hours


def coerce_characteristics(value: CharacteristicsLike) -> JobCharacteristics:
    if value is None:
        return DEFAULT_CHARACTERISTICS
    if isinstance(value, JobCharacteristics):
        return value
    return JobCharacteristics.from_dict(value)


class PriceCalculator:
    """Computes breakdowns against a fixed config snapshot."""

    def __init__(
        self,
        config: PricingConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._rates = config.rate_table()
        self._clock = clock

    @property
    def config(self) -> PricingConfig:
        return self._config

    def validate_hours(self, value: HoursLike) -> Decimal:
        hours = parse_hours(value)
        lo, hi = self._config.min_bookable, self._config.max_bookable
        if hours <= 0 or hours < lo or hours > hi:
            raise InvalidHoursError(
                f"Hours must be between {lo} and {hi}, got {hours}"
            )
        return hours

    def compute_price(
        self,
        hours: HoursLike,
        characteristics: CharacteristicsLike = None,
    ) -> PriceBreakdown:
        qty = self.validate_hours(hours)
        chars = coerce_characteristics(characteristics)
        tier = self._rates.lookup(qty)
        fees = self._config.fees

        multiplier = self._config.multipliers.factor(tier.name, chars)
        base_price = qty * tier.rate_per_hour * multiplier
        service_fee = base_price * fees.service_rate
        post_work_fee = base_price * fees.post_work_rate
        organization_fee = base_price * fees.organization_rate
        product_fee = fees.product_fee
        final_price = round_money(
            base_price + service_fee + post_work_fee + organization_fee + product_fee
        )

        return PriceBreakdown(
            hours=qty,
            price_per_hour=tier.rate_per_hour,
            multiplier=multiplier,
            base_price=base_price,
            service_fee=service_fee,
            post_work_fee=post_work_fee,
            organization_fee=organization_fee,
            product_fee=product_fee,
            final_price=final_price,
            tier=tier.name,
            currency=self._config.currency,
            characteristics=chars,
            config_version=self._config.version,
            computed_at=self._clock(),
        )

    def estimate_booking(
        self,
        hours: HoursLike,
        characteristics: CharacteristicsLike = None,
        *,
        available_hours: Decimal = Decimal("0"),
        use_credit: bool = False,
    ) -> BookingEstimate:
        """Price a booking; waive the service fee if prepaid hours cover it.

        Read-only: nothing is deducted here, the booking subsystem redeems
        through the ledger when the booking is confirmed.
        """
        breakdown = self.compute_price(hours, characteristics)
        covered = use_credit and available_hours >= breakdown.hours
        if covered:
            discounted = round_money(breakdown.components_total - breakdown.service_fee)
            discount_value = breakdown.final_price - discounted
        else:
            discounted = breakdown.final_price
            discount_value = Decimal("0.00")
        return BookingEstimate(
            breakdown=breakdown,
            paid_with_credit=covered,
            discounted_price=discounted,
            discount_value=discount_value,
            available_hours=available_hours,
        )


def quote_matches(quote: PriceBreakdown, fresh: PriceBreakdown) -> bool:
    """True when a caller-held quote prices the same as a fresh computation."""
    return (
        quote.hours == fresh.hours
        and quote.final_price == fresh.final_price
        and quote.config_version == fresh.config_version
    )


def describe(breakdown: PriceBreakdown) -> Dict[str, str]:
    """Rounded, display-ready components (for CLI tables and receipts)."""
    return {
        "base_price": str(round_money(breakdown.base_price)),
        "service_fee": str(round_money(breakdown.service_fee)),
        "post_work_fee": str(round_money(breakdown.post_work_fee)),
        "organization_fee": str(round_money(breakdown.organization_fee)),
        "product_fee": str(round_money(breakdown.product_fee)),
        "final_price": str(breakdown.final_price),
    }

