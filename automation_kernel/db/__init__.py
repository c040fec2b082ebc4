"""Database layer - engine, base classes and session helpers."""

from automation_kernel.db.base import (
    UUID,
    Base,
    TenantScopedBase,
    TrackedBase,
    UTCDateTime,
    UUIDString,
)
from automation_kernel.db.engine import (
    create_engine_for_url,
    create_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_engine_for_url",
    "create_tables",
    "Base",
    "TrackedBase",
    "TenantScopedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
