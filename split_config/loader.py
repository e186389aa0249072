"""
Billing settings loader (``split_config.loader``).

Responsibility
--------------
Loads the plan catalog YAML and parses it into the frozen
``split_config.schema`` dataclasses.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the engines only
for the ``FeatureAllowance`` value the plans convert to; no dependency on
kernel services, models or the database.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Amounts are parsed with ``Decimal(str(...))``; YAML floats never reach
  the money path.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the source
  data for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values (negative limits, bad due day, unknown default plan)
  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from split_config.schema import BillingSettings, MeteredFeature, PlanDefinition
from split_kernel.domain.currency import CurrencyRegistry
from split_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULT_PLANS_PATH = Path(__file__).parent / "sets" / "plans.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a number, got {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{field_name} is not a decimal: {value!r}") from e
    if amount < 0:
        raise ValueError(f"{field_name} must be >= 0, got {amount}")
    return amount


def parse_feature(name: str, data: dict[str, Any]) -> MeteredFeature:
    free_limit = int(data["free_limit"])
    if free_limit < 0:
        raise ValueError(f"{name}.free_limit must be >= 0, got {free_limit}")
    return MeteredFeature(
        name=name,
        free_limit=free_limit,
        unit_price=parse_decimal(data["unit_price"], f"{name}.unit_price"),
    )


def parse_plan(data: dict[str, Any]) -> PlanDefinition:
    """
    Parse a ``PlanDefinition`` from a dict.

    Raises:
        KeyError: if ``name`` is missing.
        ValueError: on negative prices or limits.
    """
    name = str(data["name"]).upper()
    features = data.get("features") or {}
    return PlanDefinition(
        name=name,
        monthly_price=parse_decimal(data.get("monthly_price", "0"), f"{name}.monthly_price"),
        features=tuple(
            parse_feature(feature_name, features[feature_name])
            for feature_name in sorted(features)
        ),
    )


def parse_billing_settings(data: dict[str, Any]) -> BillingSettings:
    """
    Parse ``BillingSettings`` from the raw YAML mapping.

    Postconditions:
        - Returns a frozen ``BillingSettings`` whose checksum is the
          SHA-256 of ``data``.
    Raises:
        KeyError: if ``currency``, ``billing`` or ``plans`` is missing.
        ValueError: on invalid values.
    """
    currency = CurrencyRegistry.validate(data["currency"])
    billing = data["billing"]

    due_day = int(billing["due_day"])
    if not 1 <= due_day <= 28:
        raise ValueError(f"due_day must be between 1 and 28, got {due_day}")

    plans = tuple(parse_plan(plan) for plan in data["plans"])
    if not plans:
        raise ValueError("At least one plan is required")
    names = [plan.name for plan in plans]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate plan names: {names}")

    default_plan = str(billing.get("default_plan", plans[0].name)).upper()
    if default_plan not in names:
        raise ValueError(f"default_plan {default_plan} is not a defined plan")

    return BillingSettings(
        currency=currency,
        due_day=due_day,
        boleto_markup=parse_decimal(billing["boleto_markup"], "boleto_markup"),
        operational_fee_feature=billing.get("operational_fee_feature", "boletos"),
        default_plan=default_plan,
        plans=plans,
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
    )


def load_billing_settings(path: Path | str | None = None) -> BillingSettings:
    """
    Load the plan catalog, defaulting to the packaged ``sets/plans.yaml``.
    """
    source = Path(path) if path is not None else DEFAULT_PLANS_PATH
    settings = parse_billing_settings(load_yaml_file(source))
    logger.info("billing_settings_loaded", extra={
        "path": str(source),
        "plan_count": len(settings.plans),
        "checksum": settings.checksum,
    })
    return settings


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
