"""
Module: claims_kernel.db.base
Responsibility: The declarative base shared by the claim, step and history
    tables, and the two column types that keep them portable between SQLite
    and PostgreSQL: UUIDs stored as text and UTC-only timestamps.
Architecture position: Kernel > DB.  Imported by every model; imports no
    other project module.

Invariants enforced:
    - Every row has a surrogate ``id`` (uuid4).  Business keys such as
      ``claim_id`` and ``entry_id`` are separate unique columns.
    - Amounts are ``Numeric(18, 2)`` and round-trip as ``Decimal``.
    - A naive datetime cannot be written, and every datetime read back is
      aware UTC even where the backend drops the offset.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in a ``String(36)`` column."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """Aware datetimes, stored and returned in UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        # SQLite hands back naive values; they were written as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
