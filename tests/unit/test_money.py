"""Money and Currency value objects."""

from decimal import Decimal

import pytest

from split_kernel.domain.currency import CurrencyRegistry
from split_kernel.domain.values import Currency, Money


class TestCurrency:
    def test_codes_are_normalized(self):
        assert Currency("brl").code == "BRL"
        assert CurrencyRegistry.validate(" usd ") == "USD"

    def test_unknown_code_rejected(self):
        with pytest.raises(ValueError, match="Invalid ISO 4217 currency code"):
            Currency("XXY")

    def test_quantum_and_tolerance_follow_precision(self):
        assert Currency("BRL").quantum == Decimal("0.01")
        assert Currency("BRL").rounding_tolerance == Decimal("0.01")
        assert Currency("CLP").quantum == Decimal("1")
        assert Currency("CLP").rounding_tolerance == Decimal("1")


class TestMoney:
    def test_float_amount_rejected(self):
        with pytest.raises(ValueError, match="must not be float"):
            Money(0.1, "BRL")

    def test_of_accepts_strings_and_ints(self):
        assert Money.of("10.50", "BRL").amount == Decimal("10.50")
        assert Money.of(3, "BRL").amount == Decimal("3")

    def test_round_half_up(self):
        assert Money.of("0.125", "BRL").round().amount == Decimal("0.13")
        assert Money.of("0.124", "BRL").round().amount == Decimal("0.12")

    def test_arithmetic_requires_same_currency(self):
        with pytest.raises(ValueError, match="different currencies"):
            Money.of("1", "BRL") + Money.of("1", "USD")

    def test_comparisons_and_predicates(self):
        ten = Money.of("10", "BRL")
        assert ten > Money.zero("BRL")
        assert ten.is_positive
        assert Money.zero("BRL").is_zero
        assert (-ten).is_negative
        assert ten * 3 == Money.of("30", "BRL")
