"""
Property tests for the split calculator.

For any gross amount and any set of percentage rules summing to 100%, the
breakdown distributes exactly the gross amount, never a negative share,
and stays within a rounding hair of the declared percentages.
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from split_engines.split_calculator import calculate_split
from split_kernel.domain.dtos import ReceiverType
from split_kernel.domain.values import Money
from tests.builders import receiver, rule, snapshot

RECEIVER_TYPES = (ReceiverType.PLATFORM, ReceiverType.AGENCY, ReceiverType.OWNER)


@st.composite
def percentage_splits(draw) -> list[Decimal]:
    """1-5 percentages with two decimals that sum to exactly 100."""
    cuts = draw(st.lists(st.integers(min_value=0, max_value=10_000), max_size=4))
    bounds = [0, *sorted(cuts), 10_000]
    return [Decimal(high - low) / 100 for low, high in zip(bounds, bounds[1:])]


gross_amounts = st.integers(min_value=10_000, max_value=1_000_000_000).map(
    lambda cents: Money(Decimal(cents) / 100, "BRL")
)


def config_for(percentages: list[Decimal]):
    return snapshot(*(
        receiver(RECEIVER_TYPES[i % 3], f"Receiver {i}", rule(value=str(p)))
        for i, p in enumerate(percentages)
    ))


class TestSplitProperties:
    @settings(max_examples=200, deadline=None)
    @given(gross=gross_amounts, percentages=percentage_splits())
    def test_breakdown_sums_exactly_to_gross(self, gross, percentages):
        result = calculate_split(config_for(percentages), gross)

        assert result.is_valid
        assert result.total_distributed == gross
        assert len(result.receivers) == len(percentages)
        assert all(not line.amount.is_negative for line in result.receivers)

    @settings(max_examples=200, deadline=None)
    @given(gross=gross_amounts, percentages=percentage_splits())
    def test_percentages_track_declared_values(self, gross, percentages):
        result = calculate_split(config_for(percentages), gross)

        for line, declared in zip(result.receivers, percentages):
            assert abs(line.percentage - declared) <= Decimal("0.05")

    @settings(max_examples=100, deadline=None)
    @given(gross=gross_amounts, percentages=percentage_splits())
    def test_calculation_is_deterministic(self, gross, percentages):
        config = config_for(percentages)
        assert calculate_split(config, gross) == calculate_split(config, gross)
