"""Database layer - engine and declarative base classes."""

from costing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from costing_kernel.db.engine import (
    create_engine_from_url,
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "create_engine_from_url",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
]
