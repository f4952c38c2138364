"""Hour-package catalog, suggestion engine and the reloadable pricing engine.

Catalog entries are priced by the calculator (default characteristics) when
the catalog is built; nothing is priced ad hoc. PricingEngine swaps whole
snapshots on reload so readers never observe a half-built catalog.
"""

from __future__ import annotations

import bisect
import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Tuple

from hourbank.core.errors import InvalidHoursError, InvalidPurchaseError
from hourbank.core.pricing.calculator import HoursLike, PriceCalculator, parse_hours
from hourbank.core.pricing.models import HourPackage
from hourbank.core.pricing.rates import PricingConfig, load_pricing_config

logger = logging.getLogger("hourbank.pricing")


class PackageCatalog:
    """Finite, ascending, immutable list of purchasable hour packages."""

    def __init__(self, calculator: PriceCalculator) -> None:
        packages = []
        for hours in calculator.config.catalog.hours():
            breakdown = calculator.compute_price(hours)
            packages.append(
                HourPackage(
                    hours=breakdown.hours,
                    price_per_hour=breakdown.price_per_hour,
                    total_price=breakdown.final_price,
                    description=f"{hours} horas de serviço",
                    breakdown=breakdown,
                )
            )
        self._packages: Tuple[HourPackage, ...] = tuple(packages)
        self._hours = [p.hours for p in self._packages]

    def __len__(self) -> int:
        return len(self._packages)

    def list_packages(self) -> Tuple[HourPackage, ...]:
        return self._packages

    def suggest_package(self, hours_needed: HoursLike) -> HourPackage:
        """Smallest package covering hours_needed; the largest if none does."""
        needed = parse_hours(hours_needed)
        idx = bisect.bisect_left(self._hours, needed)
        if idx >= len(self._packages):
            return self._packages[-1]
        return self._packages[idx]

    def get_package(self, hours: HoursLike) -> HourPackage:
        """Exact catalog entry for a purchase, or InvalidPurchaseError."""
        try:
            qty = parse_hours(hours)
        except InvalidHoursError as e:
            raise InvalidPurchaseError(str(e))
        idx = bisect.bisect_left(self._hours, qty)
        if idx < len(self._packages) and self._hours[idx] == qty:
            return self._packages[idx]
        offered = ", ".join(str(h) for h in self._hours)
        raise InvalidPurchaseError(
            f"Invalid package selection: {qty}h is not in the catalog ({offered})"
        )


@dataclass(frozen=True)
class PricingSnapshot:
    config: PricingConfig
    calculator: PriceCalculator
    catalog: PackageCatalog
    loaded_at: float


class PricingEngine:
    """Holds the current pricing snapshot. Reload is copy-on-write."""

    def __init__(
        self,
        config: Optional[PricingConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._reload_lock = threading.Lock()
        self._snapshot = self._build(config or load_pricing_config())

    def _build(self, config: PricingConfig) -> PricingSnapshot:
        calculator = PriceCalculator(config, clock=self._clock)
        return PricingSnapshot(
            config=config,
            calculator=calculator,
            catalog=PackageCatalog(calculator),
            loaded_at=self._clock(),
        )

    @property
    def snapshot(self) -> PricingSnapshot:
        return self._snapshot

    def reload(self, config: PricingConfig) -> PricingSnapshot:
        """Build a complete new snapshot, then publish it with one assignment."""
        with self._reload_lock:
            fresh = self._build(config)
            previous = self._snapshot.config.version
            self._snapshot = fresh
        logger.info(
            "pricing reloaded: version %s -> %s (%d packages)",
            previous, config.version, len(fresh.catalog),
        )
        return fresh

    # Convenience pass-throughs; each reads the snapshot reference once.

    def compute_price(self, hours, characteristics=None):
        return self._snapshot.calculator.compute_price(hours, characteristics)

    def list_packages(self) -> Tuple[HourPackage, ...]:
        return self._snapshot.catalog.list_packages()

    def suggest_package(self, hours_needed: HoursLike) -> HourPackage:
        return self._snapshot.catalog.suggest_package(hours_needed)

    def get_package(self, hours: HoursLike) -> HourPackage:
        return self._snapshot.catalog.get_package(hours)

    def estimate_booking(
        self,
        hours,
        characteristics=None,
        *,
        available_hours: Decimal = Decimal("0"),
        use_credit: bool = False,
    ):
        return self._snapshot.calculator.estimate_booking(
            hours, characteristics,
            available_hours=available_hours, use_credit=use_credit,
        )
