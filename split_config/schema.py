"""
BillingSettings schema.

Defines the human-authored plan catalog the billing aggregator is built
with: per-plan metered features (free allotment and unit price) and the
billing settings that apply to every plan.  The YAML source is parsed into
these types by the loader and injected into BillingCycleService; no module
keeps a global, mutable plan table.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from split_engines.usage_overage import FeatureAllowance


@dataclass(frozen=True)
class MeteredFeature:
    """Free allotment and overage price of one metered feature."""

    name: str
    free_limit: int
    unit_price: Decimal

    def to_allowance(self) -> FeatureAllowance:
        return FeatureAllowance(
            feature=self.name,
            free_limit=self.free_limit,
            unit_price=self.unit_price,
        )


@dataclass(frozen=True)
class PlanDefinition:
    """A subscription plan."""

    name: str
    monthly_price: Decimal
    features: tuple[MeteredFeature, ...] = ()

    def feature(self, name: str) -> MeteredFeature | None:
        for feature in self.features:
            if feature.name == name:
                return feature
        return None

    def allowances(self) -> tuple[FeatureAllowance, ...]:
        return tuple(feature.to_allowance() for feature in self.features)


@dataclass(frozen=True)
class BillingSettings:
    """
    Plan catalog plus billing-wide settings.

    Contract:
        ``checksum`` is the SHA-256 of the canonical source data, so two
        settings objects loaded from the same YAML compare equal.
    """

    currency: str
    due_day: int
    boleto_markup: Decimal
    operational_fee_feature: str
    default_plan: str
    plans: tuple[PlanDefinition, ...]
    version: int = 1
    checksum: str = ""

    def plan(self, name: str | None) -> PlanDefinition:
        """
        Plan by name; ``None`` selects the default plan.

        Raises:
            KeyError: unknown plan name.
        """
        wanted = (name or self.default_plan).upper()
        for plan in self.plans:
            if plan.name == wanted:
                return plan
        raise KeyError(f"Unknown plan: {wanted}")

    @property
    def plan_names(self) -> tuple[str, ...]:
        return tuple(plan.name for plan in self.plans)
