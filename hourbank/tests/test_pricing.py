"""Tests for the rate table, pricing config and price calculator."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from hourbank.core.errors import (
    InvalidCharacteristicsError,
    InvalidHoursError,
    PricingConfigError,
)
from hourbank.core.pricing.calculator import (
    PriceCalculator,
    describe,
    parse_hours,
    quote_matches,
    round_money,
)
from hourbank.core.pricing.models import Complexity, JobCharacteristics, PriceBreakdown
from hourbank.core.pricing.rates import (
    DEFAULT_PRICING,
    load_pricing_config,
    pricing_config_from_dict,
)
from hourbank.core.io import write_yaml


FIXED_TS = 1_700_000_000.0


@pytest.fixture
def calc():
    return PriceCalculator(pricing_config_from_dict({}), clock=lambda: FIXED_TS)


# ── Config ──────────────────────────────────────────────────────


class TestPricingConfig:
    def test_defaults(self):
        cfg = pricing_config_from_dict({})
        assert cfg.currency == "BRL"
        assert cfg.min_bookable == Decimal("2")
        assert cfg.max_bookable == Decimal("420")
        assert cfg.min_display_hours == Decimal("1")
        assert [t.name for t in cfg.tiers] == ["standard", "volume"]
        assert cfg.tiers[-1].max_hours is None
        assert cfg.catalog.hours()[0] == 40
        assert cfg.catalog.hours()[-1] == 420

    def test_version_is_stable_and_content_addressed(self):
        a = pricing_config_from_dict({})
        b = pricing_config_from_dict({})
        c = pricing_config_from_dict({"fees": {"product_fee": "30"}})
        assert a.version == b.version
        assert a.version != c.version
        assert len(a.version) == 12

    def test_unknown_key_rejected(self):
        with pytest.raises(PricingConfigError, match="Unknown pricing config key"):
            pricing_config_from_dict({"discounts": {}})

    def test_non_contiguous_tiers_rejected(self):
        tiers = [
            {"name": "a", "min_hours": 1, "max_hours": 50, "rate_per_hour": 40},
            {"name": "b", "min_hours": 60, "max_hours": None, "rate_per_hour": 20},
        ]
        with pytest.raises(PricingConfigError, match="not contiguous"):
            pricing_config_from_dict({"tiers": tiers})

    def test_bounded_last_tier_rejected(self):
        tiers = [{"name": "a", "min_hours": 1, "max_hours": 500, "rate_per_hour": 40}]
        with pytest.raises(PricingConfigError, match="unbounded"):
            pricing_config_from_dict({"tiers": tiers})

    def test_first_tier_above_min_bookable_rejected(self):
        tiers = [{"name": "a", "min_hours": 10, "max_hours": None, "rate_per_hour": 40}]
        with pytest.raises(PricingConfigError, match="min_bookable"):
            pricing_config_from_dict({"tiers": tiers})

    def test_non_positive_rate_rejected(self):
        tiers = [{"name": "a", "min_hours": 1, "max_hours": None, "rate_per_hour": 0}]
        with pytest.raises(PricingConfigError, match="positive rate"):
            pricing_config_from_dict({"tiers": tiers})

    def test_negative_fee_rejected(self):
        with pytest.raises(PricingConfigError, match="must not be negative"):
            pricing_config_from_dict({"fees": {"service_rate": "-0.1"}})

    def test_catalog_outside_bookable_range_rejected(self):
        with pytest.raises(PricingConfigError, match="catalog hours"):
            pricing_config_from_dict({"catalog": {"start": 40, "step": 20, "max_hours": 500}})

    def test_unknown_complexity_level_rejected(self):
        mult = {"complexity": {"*": {"extreme": "2.0"}}}
        with pytest.raises(PricingConfigError, match="unknown level"):
            pricing_config_from_dict({"multipliers": mult})

    def test_non_numeric_value_rejected(self):
        with pytest.raises(PricingConfigError, match="must be a number"):
            pricing_config_from_dict({"fees": {"product_fee": "fifty"}})

    def test_load_from_yaml(self, tmp_path):
        path = write_yaml(tmp_path / "pricing.yaml", {"fees": {"product_fee": 30}})
        cfg = load_pricing_config(path)
        assert cfg.fees.product_fee == Decimal("30")
        assert cfg.fees.service_rate == Decimal("0.40")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(PricingConfigError, match="not found"):
            load_pricing_config(tmp_path / "nope.yaml")

    def test_load_without_path_uses_defaults(self):
        assert load_pricing_config(None).version == pricing_config_from_dict({}).version

    def test_example_file_matches_defaults(self):
        path = Path(__file__).resolve().parents[2] / "examples" / "pricing.yaml"
        cfg = load_pricing_config(path)
        calc = PriceCalculator(cfg)
        assert calc.compute_price(40).final_price == Decimal("2770.00")
        assert len(cfg.catalog.hours()) == 20

    def test_defaults_not_mutated_by_overrides(self):
        pricing_config_from_dict({"fees": {"product_fee": "99"}})
        assert DEFAULT_PRICING["fees"]["product_fee"] == "50"


# ── Rate table ──────────────────────────────────────────────────


class TestRateTable:
    def test_every_bookable_hour_has_one_tier(self):
        table = pricing_config_from_dict({}).rate_table()
        for h in range(2, 421):
            tier = table.lookup(Decimal(h))
            assert tier.min_hours <= h
            assert tier.max_hours is None or h <= tier.max_hours

    def test_boundaries(self):
        table = pricing_config_from_dict({}).rate_table()
        assert table.lookup(Decimal("59")).name == "standard"
        assert table.lookup(Decimal("60")).name == "volume"

    def test_fractional_hours_between_tiers_stay_in_lower_tier(self):
        table = pricing_config_from_dict({}).rate_table()
        assert table.lookup(Decimal("59.5")).name == "standard"

    def test_below_first_tier(self):
        table = pricing_config_from_dict({}).rate_table()
        with pytest.raises(PricingConfigError):
            table.lookup(Decimal("0.5"))


# ── Calculator ──────────────────────────────────────────────────


class TestComputePrice:
    def test_reference_example(self, calc):
        b = calc.compute_price(40, {"environments": 1, "people": 1, "complexity": "low"})
        assert b.base_price == Decimal("1600")
        assert b.service_fee == Decimal("640")
        assert b.post_work_fee == Decimal("320")
        assert b.organization_fee == Decimal("160")
        assert b.product_fee == Decimal("50")
        assert b.final_price == Decimal("2770.00")
        assert str(b.final_price) == "2770.00"
        assert b.tier == "standard"
        assert b.price_per_hour == Decimal("40")
        assert b.currency == "BRL"
        assert b.computed_at == FIXED_TS

    def test_volume_tier(self, calc):
        b = calc.compute_price(60)
        assert b.tier == "volume"
        assert b.base_price == Decimal("1200")
        assert b.final_price == Decimal("2090.00")

    def test_bucket_rate_applies_to_all_hours(self, calc):
        assert calc.compute_price(420).final_price == Decimal("14330.00")
        assert calc.compute_price("59.5").final_price == Decimal("4096.00")

    def test_complexity_multiplier(self, calc):
        b = calc.compute_price(40, {"complexity": "high"})
        assert b.multiplier == Decimal("1.30")
        assert b.final_price == Decimal("3586.00")

    def test_combined_multipliers(self, calc):
        chars = JobCharacteristics(environments=4, people=3, complexity=Complexity.MEDIUM)
        b = calc.compute_price(40, chars)
        assert b.multiplier == Decimal("1.15") * Decimal("1.10") * Decimal("1.05")
        assert b.final_price == Decimal("3662.84")

    def test_rounded_once_half_up(self, calc):
        b = calc.compute_price("2.0001")
        assert b.components_total == Decimal("186.0068")
        assert b.final_price == Decimal("186.01")

    def test_breakdown_sums_to_final(self, calc):
        for h in (2, 7, 33, "41.25", 59, 60, 137, 420):
            for complexity in ("low", "medium", "high"):
                b = calc.compute_price(h, {"complexity": complexity, "environments": 5})
                assert abs(b.components_total - b.final_price) <= Decimal("0.005")
                assert b.final_price == round_money(b.components_total)

    def test_minimum_bookable(self, calc):
        assert calc.compute_price(2).final_price == Decimal("186.00")

    @pytest.mark.parametrize("hours", [0, 1, -5, "1.99", 421, 1000])
    def test_out_of_range_hours(self, calc, hours):
        with pytest.raises(InvalidHoursError):
            calc.compute_price(hours)

    @pytest.mark.parametrize("hours", ["abc", None, "NaN", "Infinity", True, [40]])
    def test_non_numeric_hours(self, calc, hours):
        with pytest.raises(InvalidHoursError):
            calc.compute_price(hours)

    @pytest.mark.parametrize(
        "chars",
        [
            {"environments": 0},
            {"people": 0},
            {"complexity": "extreme"},
            {"environments": "two"},
            {"people": True},
        ],
    )
    def test_invalid_characteristics(self, calc, chars):
        with pytest.raises(InvalidCharacteristicsError):
            calc.compute_price(40, chars)

    def test_missing_multiplier_entries_default_to_one(self):
        cfg = pricing_config_from_dict(
            {"multipliers": {"complexity": {"volume": {"high": "2"}}}}
        )
        calc = PriceCalculator(cfg)
        assert calc.compute_price(40, {"complexity": "high"}).multiplier == Decimal("1")
        assert calc.compute_price(60, {"complexity": "high"}).multiplier == Decimal("2")

    def test_breakdown_dict_roundtrip_preserves_money(self, calc):
        b = calc.compute_price(40)
        again = PriceBreakdown.from_dict(b.to_dict())
        assert again.final_price == b.final_price
        assert again.config_version == b.config_version
        assert quote_matches(again, b)


class TestEstimateBooking:
    def test_credit_covers_booking_waives_service_fee(self, calc):
        est = calc.estimate_booking(40, available_hours=Decimal("50"), use_credit=True)
        assert est.paid_with_credit is True
        assert est.discounted_price == Decimal("2130.00")
        assert est.discount_value == Decimal("640.00")
        assert est.breakdown.final_price == Decimal("2770.00")

    def test_not_enough_credit(self, calc):
        est = calc.estimate_booking(40, available_hours=Decimal("39"), use_credit=True)
        assert est.paid_with_credit is False
        assert est.discounted_price == est.breakdown.final_price
        assert est.discount_value == Decimal("0")

    def test_credit_not_requested(self, calc):
        est = calc.estimate_booking(40, available_hours=Decimal("100"), use_credit=False)
        assert est.paid_with_credit is False

    def test_to_dict(self, calc):
        d = calc.estimate_booking(40, available_hours=Decimal("40"), use_credit=True).to_dict()
        assert d["final_price"] == "2770.00"
        assert d["discounted_price"] == "2130.00"
        assert d["paid_with_credit"] is True


class TestHelpers:
    def test_parse_hours(self):
        assert parse_hours(40) == Decimal("40")
        assert parse_hours("12.5") == Decimal("12.5")
        assert parse_hours(12.5) == Decimal("12.5")

    def test_quote_mismatch(self, calc):
        assert not quote_matches(calc.compute_price(40), calc.compute_price(60))

    def test_describe_rounds_components(self, calc):
        d = describe(calc.compute_price("2.0001"))
        assert d["base_price"] == "80.00"
        assert d["final_price"] == "186.01"
