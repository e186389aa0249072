"""Selectors for the split kernel (read side)."""

from split_kernel.selectors.billing_selector import BillingSelector, ChargeFilter
from split_kernel.selectors.configuration_selector import (
    ConfigurationFilter,
    SplitConfigurationSelector,
)

__all__ = [
    "BillingSelector",
    "ChargeFilter",
    "ConfigurationFilter",
    "SplitConfigurationSelector",
]
