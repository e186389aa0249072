"""
Deterministic hashing utilities.

All hashing in the split kernel must be deterministic and reproducible.
This module provides the canonical serialization and hashing functions used
for audit entries, split breakdowns and engine fingerprints.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

AUDIT_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Fixed-point, trailing zeros removed: 100.00 and 100.000000000 agree
        return format(obj.normalize(), "f")
    if isinstance(obj, datetime):
        return normalize_timestamp(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID, Enum)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def normalize_timestamp(value: datetime) -> str:
    """
    Render a timestamp as UTC ISO-8601 with microseconds.

    Naive values are taken to be UTC (SQLite drops tzinfo on round-trip),
    so a hash computed before persistence still verifies after reload.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(AUDIT_TIMESTAMP_FORMAT)


def hash_audit_entry(
    configuration_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str | None,
    before: str | None,
    after: str | None,
    performed_by: str,
    timestamp: datetime,
) -> str:
    """
    Compute the integrity hash of one audit log entry.

    Each entry is independently verifiable: the hash covers only the
    entry's own fields, joined with ``|``.  Missing values hash as "".

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        configuration_id or "",
        action,
        entity_type,
        entity_id or "",
        before or "",
        after or "",
        performed_by,
        normalize_timestamp(timestamp),
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
