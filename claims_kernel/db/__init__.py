"""Database layer - engine, session scope and base classes."""

from claims_kernel.db.base import Base, UTCDateTime, UUIDString
from claims_kernel.db.engine import (
    create_engine_from_url,
    create_tables,
    drop_tables,
    make_session_factory,
    session_scope,
)

__all__ = [
    "Base",
    "UTCDateTime",
    "UUIDString",
    "create_engine_from_url",
    "create_tables",
    "drop_tables",
    "make_session_factory",
    "session_scope",
]
