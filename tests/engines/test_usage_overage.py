"""Overage pricing and the per-boleto operational fee."""

from decimal import Decimal

import pytest

from split_engines.usage_overage import (
    FeatureAllowance,
    compute_operational_fee,
    compute_overages,
)
from split_kernel.domain.values import Money

ALLOWANCES = (
    FeatureAllowance("inspections", 2, Decimal("9.90")),
    FeatureAllowance("settlements", 1, Decimal("19.90")),
    FeatureAllowance("api_calls", 0, Decimal("0.01")),
)


class TestComputeOverages:
    def test_usage_beyond_free_limit_is_charged(self):
        report = compute_overages({"inspections": 5, "settlements": 1}, ALLOWANCES, "BRL")

        inspections = report.lines[0]
        assert inspections.overage == 3
        assert inspections.charge == Money.of("29.70", "BRL")
        assert report.lines[1].charge.is_zero
        assert report.total == Money.of("29.70", "BRL")

    def test_missing_features_count_as_zero(self):
        report = compute_overages({}, ALLOWANCES, "BRL")
        assert report.total.is_zero
        assert [line.used for line in report.lines] == [0, 0, 0]
        assert report.chargeable == ()

    def test_usage_without_allowance_is_not_billed(self):
        report = compute_overages({"boletos": 40}, ALLOWANCES, "BRL")
        assert report.total.is_zero

    def test_api_calls_priced_per_call(self):
        report = compute_overages({"api_calls": 1234}, ALLOWANCES, "BRL")
        assert report.total == Money.of("12.34", "BRL")

    def test_describe_lists_only_charged_features(self):
        report = compute_overages({"inspections": 3, "settlements": 1}, ALLOWANCES, "BRL")
        assert report.describe() == "inspections: 1 units x 9.90"

    def test_snapshot_counters(self):
        report = compute_overages({"inspections": 3}, ALLOWANCES, "BRL")
        assert report.lines[0].to_snapshot() == {"used": 3, "free": 2, "charged": "9.90"}

    def test_negative_usage_rejected(self):
        with pytest.raises(ValueError, match="must be >= 0"):
            compute_overages({"inspections": -1}, ALLOWANCES, "BRL")

    def test_negative_allowance_rejected(self):
        with pytest.raises(ValueError, match="free_limit"):
            FeatureAllowance("inspections", -1, Decimal("1"))


class TestOperationalFee:
    def test_markup_per_boleto(self):
        assert compute_operational_fee(4, Decimal("1.51"), "BRL") == Money.of("6.04", "BRL")

    def test_no_boletos_no_fee(self):
        assert compute_operational_fee(0, Decimal("1.51"), "BRL").is_zero

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            compute_operational_fee(-1, Decimal("1.51"), "BRL")
