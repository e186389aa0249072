"""
Split calculator behavior on concrete configurations.

Covers percentage and fixed rules, priority ordering, min/max clamping,
charge-type filtering, the rounding residual and inconsistent rule sets.
"""

from decimal import Decimal

import pytest

from split_engines.split_calculator import SplitResult, calculate_split
from split_kernel.domain.dtos import ChargeType, ReceiverType, RuleType
from split_kernel.domain.values import Money
from split_kernel.exceptions import CalculationInconsistencyError
from tests.builders import receiver, rule, snapshot


def brl(amount: str) -> Money:
    return Money.of(amount, "BRL")


@pytest.fixture
def ten_ninety():
    return snapshot(
        receiver(ReceiverType.PLATFORM, "Platform", rule(value="10")),
        receiver(ReceiverType.AGENCY, "Agency", rule(value="90")),
    )


class TestPercentageSplit:
    def test_platform_ten_percent_of_one_thousand(self, ten_ninety):
        result = calculate_split(ten_ninety, brl("1000.00"))

        assert result.is_valid
        assert [line.amount for line in result.receivers] == [brl("100.00"), brl("900.00")]
        assert [line.percentage for line in result.receivers] == [
            Decimal("10.00"),
            Decimal("90.00"),
        ]
        assert result.total_distributed == brl("1000.00")

    def test_zero_gross_reports_declared_percentages(self, ten_ninety):
        result = calculate_split(ten_ninety, brl("0"))

        assert result.is_valid
        assert [line.amount for line in result.receivers] == [brl("0"), brl("0")]
        assert [line.percentage for line in result.receivers] == [
            Decimal("10.00"),
            Decimal("90.00"),
        ]

    def test_amount_for_sums_receiver_type(self, ten_ninety):
        result = calculate_split(ten_ninety, brl("250.00"))
        assert result.amount_for(ReceiverType.PLATFORM) == brl("25.00")
        assert result.amount_for(ReceiverType.OWNER) == brl("0")

    def test_same_input_same_result(self, ten_ninety):
        assert calculate_split(ten_ninety, brl("123.45")) == calculate_split(
            ten_ninety, brl("123.45")
        )


class TestFixedAndBounds:
    def test_fixed_rule_capped_at_gross(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform", rule(RuleType.FIXED, "50")),
        )

        result = calculate_split(config, brl("30.00"))

        assert result.is_valid
        assert result.receivers[0].amount == brl("30.00")

    def test_minimum_amount_raises_small_share(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform",
                     rule(value="10", minimum_amount=Decimal("5"))),
            receiver(ReceiverType.AGENCY, "Agency", rule(value="100")),
        )

        result = calculate_split(config, brl("20.00"))

        assert [line.amount for line in result.receivers] == [brl("5.00"), brl("15.00")]
        assert result.is_valid

    def test_maximum_amount_caps_large_share(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform",
                     rule(value="10", maximum_amount=Decimal("50"))),
            receiver(ReceiverType.AGENCY, "Agency", rule(value="100")),
        )

        result = calculate_split(config, brl("1000.00"))

        assert [line.amount for line in result.receivers] == [brl("50.00"), brl("950.00")]


class TestOrdering:
    def test_higher_priority_rule_is_served_first(self):
        config = snapshot(
            receiver(ReceiverType.AGENCY, "Agency", rule(value="100", priority=0)),
            receiver(ReceiverType.PLATFORM, "Platform",
                     rule(RuleType.FIXED, "20", priority=10)),
        )

        result = calculate_split(config, brl("100.00"))

        # Lines keep receiver order even though the platform rule ran first
        assert [line.receiver_type for line in result.receivers] == [
            ReceiverType.AGENCY,
            ReceiverType.PLATFORM,
        ]
        assert [line.amount for line in result.receivers] == [brl("80.00"), brl("20.00")]
        assert result.receivers[0].percentage == Decimal("80.00")

    def test_rounding_residual_goes_to_first_of_equal_lines(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform", rule(value="50")),
            receiver(ReceiverType.AGENCY, "Agency", rule(value="50")),
        )

        result = calculate_split(config, brl("0.05"))

        assert [line.amount for line in result.receivers] == [brl("0.02"), brl("0.03")]
        assert result.total_distributed == brl("0.05")

    def test_rounding_residual_keeps_total_at_gross(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform", rule(value="33.335")),
            receiver(ReceiverType.AGENCY, "Agency", rule(value="33.335")),
            receiver(ReceiverType.OWNER, "Owner", rule(value="33.33")),
        )

        result = calculate_split(config, brl("1.00"))

        assert [line.amount for line in result.receivers] == [
            brl("0.34"),
            brl("0.33"),
            brl("0.33"),
        ]
        assert result.total_distributed == brl("1.00")


class TestRuleFiltering:
    def test_typed_rule_applies_only_to_its_charge_type(self):
        config = snapshot(
            receiver(
                ReceiverType.PLATFORM,
                "Platform",
                rule(value="10"),
                rule(value="20", charge_type=ChargeType.OVERUSE),
            ),
            receiver(ReceiverType.AGENCY, "Agency", rule(value="100")),
        )

        rent = calculate_split(config, brl("100.00"), ChargeType.RENT)
        overuse = calculate_split(config, brl("100.00"), ChargeType.OVERUSE)

        assert rent.amount_for(ReceiverType.PLATFORM) == brl("10.00")
        assert overuse.amount_for(ReceiverType.PLATFORM) == brl("30.00")
        assert overuse.amount_for(ReceiverType.AGENCY) == brl("70.00")

    def test_missing_charge_type_applies_typed_rules(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform",
                     rule(value="10", charge_type=ChargeType.RENT)),
            receiver(ReceiverType.OWNER, "Owner",
                     rule(value="90", charge_type=ChargeType.RENT)),
        )

        result = calculate_split(config, brl("1000.00"))

        assert result.is_valid
        assert result.errors == ()
        assert [line.amount for line in result.receivers] == [
            brl("100.00"),
            brl("900.00"),
        ]
        assert result.total_distributed == brl("1000.00")

    def test_inactive_rule_ignored(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform", rule(value="10", is_active=False)),
            receiver(ReceiverType.AGENCY, "Agency", rule(value="100")),
        )

        result = calculate_split(config, brl("100.00"))

        assert [line.receiver_type for line in result.receivers] == [ReceiverType.AGENCY]
        assert result.receivers[0].amount == brl("100.00")


class TestInconsistentResults:
    def test_no_applicable_rule_is_invalid(self):
        config = snapshot(
            receiver(ReceiverType.PLATFORM, "Platform",
                     rule(value="100", charge_type=ChargeType.RENT)),
        )

        result = calculate_split(config, brl("100.00"), ChargeType.OVERUSE)

        assert not result.is_valid
        assert result.receivers == ()
        assert "No active rule applies to overuse" in result.errors[0]
        with pytest.raises(CalculationInconsistencyError) as exc_info:
            result.require_consistent()
        assert exc_info.value.gross_amount == "100.00"

    def test_under_distribution_is_invalid(self):
        config = snapshot(receiver(ReceiverType.PLATFORM, "Platform", rule(value="10")))

        result = calculate_split(config, brl("100.00"))

        assert not result.is_valid
        assert result.total_distributed == brl("10.00")
        assert "does not cover the full amount" in result.errors[0]

    def test_negative_gross_rejected(self, ten_ninety):
        with pytest.raises(ValueError, match="must be >= 0"):
            calculate_split(ten_ninety, brl("-1.00"))

    def test_currency_mismatch_rejected(self, ten_ninety):
        with pytest.raises(ValueError, match="does not match"):
            calculate_split(ten_ninety, Money.of("10", "USD"))


class TestSerialization:
    def test_breakdown_restores_equal_result(self, ten_ninety):
        result = calculate_split(ten_ninety, brl("1000.00"), ChargeType.RENT)

        data = result.to_dict()

        assert data["receivers"][0]["amount"] == "100.00"
        assert data["currency"] == "BRL"
        assert SplitResult.from_dict(data) == result

    def test_calculation_is_traced(self, ten_ninety, captured_logs):
        calculate_split(ten_ninety, brl("10.00"))

        messages = [record["message"] for record in captured_logs()]
        assert "split_calculated" in messages
        trace = next(r for r in captured_logs() if r["message"] == "SPLIT_ENGINE_TRACE")
        assert trace["engine_name"] == "split"
        assert len(trace["input_fingerprint"]) == 16
