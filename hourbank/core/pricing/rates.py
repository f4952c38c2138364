"""Rate table and pricing configuration.

Money is Decimal (BRL). Everything the calculator needs -- tiers, fee
percentages, the characteristics multiplier table and the catalog layout --
lives in an immutable PricingConfig, built from DEFAULT_PRICING or a YAML
file, so pricing can be tuned without touching code.

Tier selection is by bucket: every hour in a booking is billed at the rate
of the tier the total quantity falls into.
"""

from __future__ import annotations

import bisect
import copy
import hashlib
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from hourbank.core.errors import PricingConfigError
from hourbank.core.io import read_yaml
from hourbank.core.pricing.models import Complexity, JobCharacteristics

logger = logging.getLogger("hourbank.pricing")

ONE = Decimal("1")


def to_decimal(value: Any, what: str = "value") -> Decimal:
    """Coerce ints, floats, strings and Decimals to a finite Decimal."""
    if isinstance(value, bool):
        raise PricingConfigError(f"{what} must be a number, got {value!r}")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise PricingConfigError(f"{what} must be a number, got {value!r}")
    if not d.is_finite():
        raise PricingConfigError(f"{what} must be finite, got {value!r}")
    return d


# ── Plan building blocks ────────────────────────────────────────


@dataclass(frozen=True)
class RateTier:
    """Contiguous hour range billed at one per-hour rate."""

    name: str
    min_hours: int
    max_hours: Optional[int]
    rate_per_hour: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "min_hours": self.min_hours,
            "max_hours": self.max_hours,
            "rate_per_hour": str(self.rate_per_hour),
        }


@dataclass(frozen=True)
class Bracket:
    """Integer range [min, max] mapped to a multiplier factor. max=None is open."""

    min: int
    max: Optional[int]
    factor: Decimal

    def contains(self, value: int) -> bool:
        return value >= self.min and (self.max is None or value <= self.max)


@dataclass(frozen=True)
class FeeSchedule:
    service_rate: Decimal = Decimal("0.40")
    post_work_rate: Decimal = Decimal("0.20")
    organization_rate: Decimal = Decimal("0.10")
    product_fee: Decimal = Decimal("50")


@dataclass(frozen=True)
class MultiplierTable:
    """hours-tier x complexity x environment-count (x people) -> factor.

    Missing entries mean factor 1.
    """

    complexity: Mapping[str, Mapping[str, Decimal]]
    environments: Tuple[Bracket, ...] = ()
    people: Tuple[Bracket, ...] = ()

    def factor(self, tier_name: str, characteristics: JobCharacteristics) -> Decimal:
        by_level = self.complexity.get(tier_name) or self.complexity.get("*") or {}
        result = by_level.get(characteristics.complexity.value, ONE)
        result *= _bracket_factor(self.environments, characteristics.environments)
        result *= _bracket_factor(self.people, characteristics.people)
        return result


def _bracket_factor(brackets: Tuple[Bracket, ...], value: int) -> Decimal:
    for b in brackets:
        if b.contains(value):
            return b.factor
    return ONE


@dataclass(frozen=True)
class CatalogSpec:
    """Catalog hour layout: start, start+step, ... up to max_hours."""

    start: int = 40
    step: int = 20
    max_hours: int = 420

    def hours(self) -> Tuple[int, ...]:
        return tuple(range(self.start, self.max_hours + 1, self.step))


class RateTable:
    """Ordered, contiguous tiers with O(log n) bucket lookup."""

    def __init__(self, tiers: Tuple[RateTier, ...]) -> None:
        self._tiers = tiers
        self._mins = [t.min_hours for t in tiers]

    @property
    def tiers(self) -> Tuple[RateTier, ...]:
        return self._tiers

    def lookup(self, hours: Decimal) -> RateTier:
        """Return the tier with the greatest min_hours <= hours.

        Fractional hours past a tier's max_hours but below the next tier's
        min_hours stay in the lower tier.
        """
        idx = bisect.bisect_right(self._mins, hours) - 1
        if idx < 0:
            raise PricingConfigError(f"No rate tier covers {hours}h")
        return self._tiers[idx]


@dataclass(frozen=True)
class PricingConfig:
    """Immutable pricing snapshot."""

    version: str
    currency: str
    min_bookable: Decimal
    max_bookable: Decimal
    min_display_hours: Decimal
    tiers: Tuple[RateTier, ...]
    fees: FeeSchedule
    multipliers: MultiplierTable
    catalog: CatalogSpec

    def rate_table(self) -> RateTable:
        return RateTable(self.tiers)

    def validate(self) -> None:
        """Raise PricingConfigError if tiers, bounds or catalog are inconsistent."""
        errors: List[str] = []
        if not self.tiers:
            errors.append("at least one rate tier is required")
        else:
            for prev, nxt in zip(self.tiers, self.tiers[1:]):
                if prev.max_hours is None:
                    errors.append(f"tier {prev.name!r} is unbounded but is not the last tier")
                elif nxt.min_hours != prev.max_hours + 1:
                    errors.append(
                        f"tiers {prev.name!r} and {nxt.name!r} are not contiguous "
                        f"({prev.max_hours} -> {nxt.min_hours})"
                    )
            for t in self.tiers:
                if t.max_hours is not None and t.max_hours < t.min_hours:
                    errors.append(f"tier {t.name!r} has max_hours < min_hours")
                if t.rate_per_hour <= 0:
                    errors.append(f"tier {t.name!r} must have a positive rate")
            if self.tiers[-1].max_hours is not None:
                errors.append("last tier must be unbounded (max_hours: null)")
            if self.tiers[0].min_hours > self.min_bookable:
                errors.append(
                    f"first tier starts at {self.tiers[0].min_hours}h, "
                    f"above min_bookable {self.min_bookable}h"
                )
        if self.min_bookable <= 0:
            errors.append("min_bookable must be positive")
        if self.max_bookable < self.min_bookable:
            errors.append("max_bookable must be >= min_bookable")
        for rate_name in ("service_rate", "post_work_rate", "organization_rate", "product_fee"):
            if getattr(self.fees, rate_name) < 0:
                errors.append(f"fees.{rate_name} must not be negative")
        if self.catalog.step <= 0:
            errors.append("catalog.step must be positive")
        elif not self.catalog.hours():
            errors.append("catalog is empty")
        else:
            hours = self.catalog.hours()
            if hours[0] < self.min_bookable or hours[-1] > self.max_bookable:
                errors.append("catalog hours must lie within [min_bookable, max_bookable]")
        if errors:
            raise PricingConfigError("Invalid pricing config: " + "; ".join(errors))


# ── Defaults ────────────────────────────────────────────────────

DEFAULT_PRICING: Dict[str, Any] = {
    "currency": "BRL",
    "min_bookable": 2,
    "max_bookable": 420,
    "min_display_hours": 1,
    "tiers": [
        {"name": "standard", "min_hours": 1, "max_hours": 59, "rate_per_hour": "40"},
        {"name": "volume", "min_hours": 60, "max_hours": None, "rate_per_hour": "20"},
    ],
    "fees": {
        "service_rate": "0.40",
        "post_work_rate": "0.20",
        "organization_rate": "0.10",
        "product_fee": "50",
    },
    "multipliers": {
        "complexity": {
            "*": {"low": "1.00", "medium": "1.15", "high": "1.30"},
        },
        "environments": [
            {"min": 1, "max": 3, "factor": "1.00"},
            {"min": 4, "max": 6, "factor": "1.10"},
            {"min": 7, "max": None, "factor": "1.20"},
        ],
        "people": [
            {"min": 1, "max": 2, "factor": "1.00"},
            {"min": 3, "max": None, "factor": "1.05"},
        ],
    },
    "catalog": {"start": 40, "step": 20, "max_hours": 420},
}


def config_version(data: Dict[str, Any]) -> str:
    """Stable short hash of a normalized config dict."""
    blob = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(blob.encode()).hexdigest()[:12]


def _parse_brackets(rows: Any, what: str) -> Tuple[Bracket, ...]:
    out = []
    for i, row in enumerate(rows or []):
        try:
            out.append(
                Bracket(
                    min=int(row["min"]),
                    max=None if row.get("max") is None else int(row["max"]),
                    factor=to_decimal(row["factor"], f"multipliers.{what}[{i}].factor"),
                )
            )
        except (KeyError, TypeError) as e:
            raise PricingConfigError(f"multipliers.{what}[{i}] is malformed: {e}")
    return tuple(out)


def pricing_config_from_dict(data: Dict[str, Any]) -> PricingConfig:
    """Build and validate a PricingConfig. Missing sections fall back to defaults."""
    merged = copy.deepcopy(DEFAULT_PRICING)
    for key, value in (data or {}).items():
        if key not in merged:
            raise PricingConfigError(f"Unknown pricing config key: {key!r}")
        merged[key] = value

    try:
        tiers = tuple(
            RateTier(
                name=str(t.get("name") or f"tier{i}"),
                min_hours=int(t["min_hours"]),
                max_hours=None if t.get("max_hours") is None else int(t["max_hours"]),
                rate_per_hour=to_decimal(t["rate_per_hour"], f"tiers[{i}].rate_per_hour"),
            )
            for i, t in enumerate(merged["tiers"])
        )
    except (KeyError, TypeError) as e:
        raise PricingConfigError(f"Malformed tier definition: {e}")
    tiers = tuple(sorted(tiers, key=lambda t: t.min_hours))

    fees_raw = {**DEFAULT_PRICING["fees"], **(merged.get("fees") or {})}
    fees = FeeSchedule(
        service_rate=to_decimal(fees_raw["service_rate"], "fees.service_rate"),
        post_work_rate=to_decimal(fees_raw["post_work_rate"], "fees.post_work_rate"),
        organization_rate=to_decimal(fees_raw["organization_rate"], "fees.organization_rate"),
        product_fee=to_decimal(fees_raw["product_fee"], "fees.product_fee"),
    )

    mult_raw = merged.get("multipliers") or {}
    complexity: Dict[str, Dict[str, Decimal]] = {}
    for tier_name, levels in (mult_raw.get("complexity") or {}).items():
        parsed: Dict[str, Decimal] = {}
        for level, factor in (levels or {}).items():
            if level not in {c.value for c in Complexity}:
                raise PricingConfigError(
                    f"multipliers.complexity.{tier_name} has unknown level {level!r}"
                )
            parsed[level] = to_decimal(factor, f"multipliers.complexity.{tier_name}.{level}")
        complexity[str(tier_name)] = parsed
    multipliers = MultiplierTable(
        complexity=complexity,
        environments=_parse_brackets(mult_raw.get("environments"), "environments"),
        people=_parse_brackets(mult_raw.get("people"), "people"),
    )

    cat_raw = {**DEFAULT_PRICING["catalog"], **(merged.get("catalog") or {})}
    catalog = CatalogSpec(
        start=int(cat_raw["start"]),
        step=int(cat_raw["step"]),
        max_hours=int(cat_raw["max_hours"]),
    )

    config = PricingConfig(
        version=config_version(merged),
        currency=str(merged["currency"]),
        min_bookable=to_decimal(merged["min_bookable"], "min_bookable"),
        max_bookable=to_decimal(merged["max_bookable"], "max_bookable"),
        min_display_hours=to_decimal(merged["min_display_hours"], "min_display_hours"),
        tiers=tiers,
        fees=fees,
        multipliers=multipliers,
        catalog=catalog,
    )
    config.validate()
    return config


def load_pricing_config(path: Optional[Union[str, Path]] = None) -> PricingConfig:
    """Load pricing config from a YAML file, or the built-in defaults when path is empty."""
    if not path:
        return pricing_config_from_dict({})
    p = Path(path)
    if not p.exists():
        raise PricingConfigError(f"Pricing config not found: {p}")
    data = read_yaml(p)
    if not isinstance(data, dict):
        raise PricingConfigError(f"Pricing config must be a mapping: {p}")
    config = pricing_config_from_dict(data)
    logger.info("pricing config loaded from %s (version=%s)", p, config.version)
    return config
