"""Database layer - engine, base classes and immutability listeners."""

from supply_kernel.db.base import (
    SYSTEM_ACTOR_ID,
    UUID,
    Base,
    TrackedBase,
    UTCDateTime,
    UUIDString,
)
from supply_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "SYSTEM_ACTOR_ID",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
