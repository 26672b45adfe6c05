"""Database layer - engine, base classes and column types."""

from workflow_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from workflow_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from workflow_kernel.db.types import UTCDateTime, ensure_utc

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "UTCDateTime",
    "ensure_utc",
]
