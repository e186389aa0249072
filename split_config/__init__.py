"""
split_config -- plan catalog and billing settings.

The catalog is a reviewable YAML artifact (``sets/plans.yaml``) parsed
into frozen dataclasses and injected into the billing aggregator.

Usage:
    from split_config import load_billing_settings

    settings = load_billing_settings()
    plan = settings.plan("ESSENTIAL")
"""

from split_config.loader import compute_checksum, load_billing_settings
from split_config.schema import BillingSettings, MeteredFeature, PlanDefinition

__all__ = [
    "BillingSettings",
    "MeteredFeature",
    "PlanDefinition",
    "compute_checksum",
    "load_billing_settings",
]
