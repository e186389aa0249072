"""Database layer - engine, base classes and immutability listeners."""

from split_kernel.db.base import UUID, Base, TrackedBase, UUIDString, enum_column
from split_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "enum_column",
]
