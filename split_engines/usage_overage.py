"""
Usage Overage -- price metered usage beyond a plan's free allotment.

Responsibility:
    Turn per-feature usage counters into overage lines and the operational
    fee a billing cycle close charges for.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Plan data arrives as ``FeatureAllowance`` values built by the caller;
    this module never reads the plan catalog itself.

Invariants enforced:
    - overage = max(0, used - free_limit); charge = overage * unit_price,
      rounded ROUND_HALF_UP to the currency's minor unit per feature.
    - Lines follow allowance order, so reports are deterministic.

Failure modes:
    - ValueError on negative usage counts, free limits or markups.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from split_engines.tracer import traced_engine
from split_kernel.domain.values import Currency, Money


@dataclass(frozen=True)
class FeatureAllowance:
    """Free allotment and per-unit price of one metered feature."""

    feature: str
    free_limit: int
    unit_price: Decimal

    def __post_init__(self) -> None:
        if self.free_limit < 0:
            raise ValueError(f"free_limit must be >= 0, got {self.free_limit}")
        if self.unit_price < 0:
            raise ValueError(f"unit_price must be >= 0, got {self.unit_price}")


@dataclass(frozen=True)
class FeatureOverage:
    feature: str
    used: int
    free_limit: int
    overage: int
    unit_price: Decimal
    charge: Money

    def to_snapshot(self) -> dict[str, object]:
        """The ``{used, free, charged}`` counters stored on a closed cycle."""
        return {
            "used": self.used,
            "free": self.free_limit,
            "charged": str(self.charge.amount),
        }


@dataclass(frozen=True)
class OverageReport:
    """
    Overage of every metered feature for one period.

    Guarantees:
        - ``total`` is the sum of the per-feature charges.
    """

    lines: tuple[FeatureOverage, ...]
    total: Money

    @property
    def chargeable(self) -> tuple[FeatureOverage, ...]:
        return tuple(line for line in self.lines if line.charge.is_positive)

    def describe(self) -> str:
        """Human-readable summary of the contributing features."""
        return ", ".join(
            f"{line.feature}: {line.overage} units x {line.unit_price}"
            for line in self.chargeable
        )


@traced_engine("usage_overage", "1.0", fingerprint_fields=("usage", "allowances"))
def compute_overages(
    usage: Mapping[str, int],
    allowances: Sequence[FeatureAllowance],
    currency: Currency | str,
) -> OverageReport:
    """
    Price the usage beyond each feature's free limit.

    Features absent from ``usage`` count as zero.  Usage for features
    without an allowance is not billed.
    """
    if isinstance(currency, str):
        currency = Currency(currency)

    lines: list[FeatureOverage] = []
    total = Money.zero(currency)
    for allowance in allowances:
        used = usage.get(allowance.feature, 0)
        if used < 0:
            raise ValueError(f"usage of {allowance.feature} must be >= 0, got {used}")
        overage = max(0, used - allowance.free_limit)
        charge = Money(allowance.unit_price * overage, currency).round()
        lines.append(
            FeatureOverage(
                feature=allowance.feature,
                used=used,
                free_limit=allowance.free_limit,
                overage=overage,
                unit_price=allowance.unit_price,
                charge=charge,
            )
        )
        total = total + charge

    return OverageReport(lines=tuple(lines), total=total)


def compute_operational_fee(
    count: int,
    markup: Decimal,
    currency: Currency | str,
) -> Money:
    """Fixed markup per issued boleto."""
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")
    if markup < 0:
        raise ValueError(f"markup must be >= 0, got {markup}")
    return Money(markup * count, currency).round()
