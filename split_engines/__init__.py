"""
Module: split_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for split_kernel
    services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import split_kernel.domain, split_kernel.exceptions and
    split_kernel.logging_config.  MUST NOT import split_kernel.services,
    split_kernel.models or split_kernel.db.

Invariants enforced:
    - Purity: engines never read the clock or a session.  Callers pass
      everything in.
    - Decimal-only arithmetic through ``Money``.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``, emitting
    SPLIT_ENGINE_TRACE log records with engine name, version, input
    fingerprint and duration.
"""

from split_engines.split_calculator import (
    ReceiverSnapshot,
    RuleSnapshot,
    SplitConfigurationSnapshot,
    SplitLine,
    SplitResult,
    calculate_split,
)
from split_engines.tracer import compute_input_fingerprint, traced_engine
from split_engines.usage_overage import (
    FeatureAllowance,
    FeatureOverage,
    OverageReport,
    compute_operational_fee,
    compute_overages,
)

__all__ = [
    "FeatureAllowance",
    "FeatureOverage",
    "OverageReport",
    "ReceiverSnapshot",
    "RuleSnapshot",
    "SplitConfigurationSnapshot",
    "SplitLine",
    "SplitResult",
    "calculate_split",
    "compute_input_fingerprint",
    "compute_operational_fee",
    "compute_overages",
    "traced_engine",
]
