"""
Split Calculator -- divide a gross charge amount among receivers.

Responsibility:
    Apply a configuration's active rules to a gross amount and produce a
    deterministic per-receiver breakdown (``SplitResult``) that is stored
    verbatim on the charge it was computed for.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import split_kernel/domain/values, split_kernel/exceptions and
    the engine tracer.  Operates on frozen snapshots, never on ORM rows.

Invariants enforced:
    - Rule evaluation order is priority descending, ties broken by receiver
      order then rule order.  Never by dict or set iteration order.
    - Each rule is clamped to its [minimum, maximum] bounds (maximum applied
      first) and then capped at the funds still remaining.
    - Rounding happens once per receiver, ROUND_HALF_UP to the currency's
      minor unit.  When the rules distribute the whole gross amount, the
      rounding residual goes to the largest line (first in receiver order
      on a tie), so the breakdown sums exactly to the rounded gross.
    - A result is valid only if it has at least one line and
      |total_distributed - gross| <= the currency's rounding tolerance.

Failure modes:
    - ValueError on a negative gross amount or a currency that differs from
      the configuration's.
    - An under-distributing rule set is NOT an exception: the result comes
      back with ``is_valid=False`` and a descriptive error.  Callers that
      must not proceed call ``require_consistent()``.

Audit relevance:
    ``SplitResult.to_dict()`` is the serialized breakdown persisted on every
    charge; ``from_dict()`` restores it for refund and reconciliation logic.
    Every calculation is traced (SPLIT_ENGINE_TRACE).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from split_engines.tracer import traced_engine
from split_kernel.domain.dtos import ChargeType, ReceiverType, RuleType
from split_kernel.domain.values import Currency, Money
from split_kernel.exceptions import CalculationInconsistencyError
from split_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from split_kernel.domain.dtos import SplitConfigurationInfo

logger = get_logger("engines.split")

_HUNDRED = Decimal("100")
_PERCENT_QUANTUM = Decimal("0.01")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleSnapshot:
    """One rule as seen by the calculator."""

    rule_id: UUID | None
    rule_type: RuleType
    value: Decimal
    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    charge_type: ChargeType | None = None
    priority: int = 0
    is_active: bool = True

    def applies_to(self, charge_type: ChargeType | None) -> bool:
        # No charge type means no filter; an untyped rule matches every charge.
        if not self.is_active:
            return False
        return (
            charge_type is None
            or self.charge_type is None
            or self.charge_type == charge_type
        )


@dataclass(frozen=True)
class ReceiverSnapshot:
    """A receiver and its rules, in input order."""

    receiver_id: UUID | None
    receiver_type: ReceiverType
    name: str
    rules: tuple[RuleSnapshot, ...] = ()


@dataclass(frozen=True)
class SplitConfigurationSnapshot:
    """
    Frozen calculator input built from a persisted configuration.

    Contract:
        Single-owner composition: the snapshot owns its receivers, each
        receiver owns its rules.  Back-references are plain ids.
    Non-goals:
        - Does not carry lifecycle state; the service decides which
          configuration may be used.
    """

    configuration_id: UUID | None
    version: int | None
    currency: str
    receivers: tuple[ReceiverSnapshot, ...] = ()

    @classmethod
    def from_info(cls, info: SplitConfigurationInfo) -> SplitConfigurationSnapshot:
        return cls(
            configuration_id=info.id,
            version=info.version,
            currency=info.currency,
            receivers=tuple(
                ReceiverSnapshot(
                    receiver_id=receiver.id,
                    receiver_type=receiver.receiver_type,
                    name=receiver.name,
                    rules=tuple(
                        RuleSnapshot(
                            rule_id=rule.id,
                            rule_type=rule.rule_type,
                            value=rule.value,
                            minimum_amount=rule.minimum_amount,
                            maximum_amount=rule.maximum_amount,
                            charge_type=rule.charge_type,
                            priority=rule.priority,
                            is_active=rule.is_active,
                        )
                        for rule in receiver.rules
                    ),
                )
                for receiver in info.receivers
            ),
        )


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SplitLine:
    """Share of one receiver."""

    receiver_id: UUID | None
    receiver_type: ReceiverType
    name: str
    amount: Money
    percentage: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "receiver_id": str(self.receiver_id) if self.receiver_id else None,
            "receiver_type": self.receiver_type.value,
            "name": self.name,
            "amount": str(self.amount.amount),
            "percentage": str(self.percentage),
        }


@dataclass(frozen=True)
class SplitResult:
    """
    Complete split of a gross amount.

    Contract:
        Frozen dataclass summarising one calculation.
    Guarantees:
        - ``total_distributed`` is the sum of the rounded line amounts.
        - ``to_dict()`` / ``from_dict()`` round-trip losslessly.
    Non-goals:
        - Does not persist itself; the billing service stores ``to_dict()``.
    """

    gross_amount: Money
    receivers: tuple[SplitLine, ...]
    total_distributed: Money
    is_valid: bool
    errors: tuple[str, ...] = ()
    charge_type: ChargeType | None = None
    configuration_id: UUID | None = None
    configuration_version: int | None = None

    @classmethod
    def unresolved(
        cls,
        gross_amount: Money,
        charge_type: ChargeType | None,
        error: str,
    ) -> SplitResult:
        """Invalid, empty result for a scope with no usable configuration."""
        return cls(
            gross_amount=gross_amount,
            receivers=(),
            total_distributed=Money.zero(gross_amount.currency),
            is_valid=False,
            errors=(error,),
            charge_type=charge_type,
        )

    def amount_for(self, receiver_type: ReceiverType) -> Money:
        """Sum of the lines belonging to ``receiver_type``."""
        total = Money.zero(self.gross_amount.currency)
        for line in self.receivers:
            if line.receiver_type == receiver_type:
                total = total + line.amount
        return total

    def require_consistent(self) -> SplitResult:
        """
        Return self, or raise if the split does not distribute the gross.

        Raises:
            CalculationInconsistencyError: ``is_valid`` is False.
        """
        if not self.is_valid:
            raise CalculationInconsistencyError(
                computed_total=str(self.total_distributed.amount),
                gross_amount=str(self.gross_amount.amount),
                configuration_id=(
                    str(self.configuration_id) if self.configuration_id else None
                ),
                errors=list(self.errors),
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "gross_amount": str(self.gross_amount.amount),
            "currency": self.gross_amount.currency.code,
            "charge_type": self.charge_type.value if self.charge_type else None,
            "configuration_id": (
                str(self.configuration_id) if self.configuration_id else None
            ),
            "configuration_version": self.configuration_version,
            "receivers": [line.to_dict() for line in self.receivers],
            "total_distributed": str(self.total_distributed.amount),
            "is_valid": self.is_valid,
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SplitResult:
        currency = Currency(data["currency"])
        return cls(
            gross_amount=Money(Decimal(data["gross_amount"]), currency),
            receivers=tuple(
                SplitLine(
                    receiver_id=UUID(line["receiver_id"]) if line["receiver_id"] else None,
                    receiver_type=ReceiverType(line["receiver_type"]),
                    name=line["name"],
                    amount=Money(Decimal(line["amount"]), currency),
                    percentage=Decimal(line["percentage"]),
                )
                for line in data["receivers"]
            ),
            total_distributed=Money(Decimal(data["total_distributed"]), currency),
            is_valid=data["is_valid"],
            errors=tuple(data.get("errors", ())),
            charge_type=ChargeType(data["charge_type"]) if data.get("charge_type") else None,
            configuration_id=(
                UUID(data["configuration_id"]) if data.get("configuration_id") else None
            ),
            configuration_version=data.get("configuration_version"),
        )


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def _rule_amount(rule: RuleSnapshot, gross: Decimal) -> Decimal:
    if rule.rule_type == RuleType.PERCENTAGE:
        amount = gross * rule.value / _HUNDRED
    else:
        amount = rule.value
    if rule.maximum_amount is not None:
        amount = min(rule.maximum_amount, amount)
    if rule.minimum_amount is not None:
        amount = max(rule.minimum_amount, amount)
    return amount


@traced_engine("split", "1.0", fingerprint_fields=("configuration", "gross_amount", "charge_type"))
def calculate_split(
    configuration: SplitConfigurationSnapshot,
    gross_amount: Money,
    charge_type: ChargeType | None = None,
) -> SplitResult:
    """
    Split ``gross_amount`` among the configuration's receivers.

    Preconditions:
        - ``gross_amount`` is non-negative and in the configuration currency.
    Postconditions:
        - Lines follow receiver order and include every receiver with at
          least one applicable rule.
        - Identical inputs always produce identical results.
    Raises:
        ValueError: negative gross or currency mismatch.
    """
    if gross_amount.is_negative:
        raise ValueError(f"gross_amount must be >= 0, got {gross_amount}")
    currency = Currency(configuration.currency)
    if gross_amount.currency != currency:
        raise ValueError(
            f"gross_amount currency {gross_amount.currency} does not match "
            f"configuration currency {currency}"
        )

    gross = gross_amount.amount
    pairs: list[tuple[int, RuleSnapshot]] = [
        (index, rule)
        for index, receiver in enumerate(configuration.receivers)
        for rule in receiver.rules
        if rule.applies_to(charge_type)
    ]
    # sorted() is stable, so equal priorities keep receiver/rule order
    ordered = sorted(pairs, key=lambda pair: -pair[1].priority)

    remaining = gross
    totals: dict[int, Decimal] = {}
    declared_percent: dict[int, Decimal] = {}
    for index, rule in ordered:
        amount = min(_rule_amount(rule, gross), remaining)
        remaining -= amount
        totals[index] = totals.get(index, Decimal("0")) + amount
        if rule.rule_type == RuleType.PERCENTAGE:
            declared_percent[index] = declared_percent.get(index, Decimal("0")) + rule.value

    indexes = sorted(totals)
    rounded = {
        index: totals[index].quantize(currency.quantum, rounding=ROUND_HALF_UP)
        for index in indexes
    }

    if indexes and remaining == 0:
        residual = gross_amount.round().amount - sum(rounded.values(), Decimal("0"))
        if residual:
            largest = max(indexes, key=lambda i: (rounded[i], -i))
            rounded[largest] += residual

    lines: list[SplitLine] = []
    for index in indexes:
        receiver = configuration.receivers[index]
        amount = rounded[index]
        if gross > 0:
            percentage = (amount / gross * _HUNDRED).quantize(
                _PERCENT_QUANTUM, rounding=ROUND_HALF_UP
            )
        else:
            percentage = declared_percent.get(index, Decimal("0")).quantize(
                _PERCENT_QUANTUM, rounding=ROUND_HALF_UP
            )
        lines.append(
            SplitLine(
                receiver_id=receiver.receiver_id,
                receiver_type=receiver.receiver_type,
                name=receiver.name,
                amount=Money(amount, currency),
                percentage=percentage,
            )
        )

    total = sum((line.amount.amount for line in lines), Decimal("0"))
    errors: list[str] = []
    if not lines:
        scope = charge_type.value if charge_type else "this configuration"
        errors.append(f"No active rule applies to {scope}")
    elif abs(total - gross) > currency.rounding_tolerance:
        errors.append(
            f"Rules distributed {total} of gross amount {gross_amount.round().amount} "
            f"({currency.code}); the configuration does not cover the full amount"
        )

    result = SplitResult(
        gross_amount=gross_amount,
        receivers=tuple(lines),
        total_distributed=Money(total, currency),
        is_valid=not errors,
        errors=tuple(errors),
        charge_type=charge_type,
        configuration_id=configuration.configuration_id,
        configuration_version=configuration.version,
    )

    logger.info("split_calculated", extra={
        "configuration_id": (
            str(configuration.configuration_id) if configuration.configuration_id else None
        ),
        "gross_amount": str(gross),
        "total_distributed": str(total),
        "receiver_count": len(lines),
        "is_valid": result.is_valid,
    })
    return result
