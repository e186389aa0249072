"""Input builders shared by the test modules."""

from decimal import Decimal
from uuid import uuid4

from split_engines.split_calculator import (
    ReceiverSnapshot,
    RuleSnapshot,
    SplitConfigurationSnapshot,
)
from split_kernel.domain.dtos import ReceiverInput, ReceiverType, RuleInput, RuleType


def percentage_receiver(
    receiver_type: ReceiverType,
    name: str,
    percent: str,
    **rule_kwargs,
) -> ReceiverInput:
    """A receiver with one PERCENTAGE rule and a payout wallet."""
    return ReceiverInput(
        receiver_type=receiver_type,
        name=name,
        wallet_id=uuid4(),
        rules=(RuleInput(rule_type=RuleType.PERCENTAGE, value=Decimal(percent), **rule_kwargs),),
    )


def platform_agency_receivers(platform_percent: str = "10") -> tuple[ReceiverInput, ...]:
    agency_percent = str(Decimal("100") - Decimal(platform_percent))
    return (
        percentage_receiver(ReceiverType.PLATFORM, "Platform", platform_percent),
        percentage_receiver(ReceiverType.AGENCY, "Agency", agency_percent),
    )


def rule(rule_type: RuleType = RuleType.PERCENTAGE, value: str = "0", **kwargs) -> RuleSnapshot:
    return RuleSnapshot(rule_id=uuid4(), rule_type=rule_type, value=Decimal(value), **kwargs)


def receiver(receiver_type: ReceiverType, name: str, *rules: RuleSnapshot) -> ReceiverSnapshot:
    return ReceiverSnapshot(
        receiver_id=uuid4(),
        receiver_type=receiver_type,
        name=name,
        rules=tuple(rules),
    )


def snapshot(*receivers: ReceiverSnapshot, currency: str = "BRL") -> SplitConfigurationSnapshot:
    return SplitConfigurationSnapshot(
        configuration_id=uuid4(),
        version=1,
        currency=currency,
        receivers=tuple(receivers),
    )
