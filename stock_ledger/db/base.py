"""
Module: stock_ledger.db.base
Responsibility: Declarative base and portable column types for the ledger's
    ORM models.
Architecture position: Ledger > DB.  Lowest-level import target for the
    models package; MUST NOT import from models/, services/ or gateway/.

Invariants enforced:
    - UUID primary keys on every model (uuid4 default).
    - Quantities round-trip as exact Decimal on every backend: NUMERIC on
      PostgreSQL, canonical strings on SQLite (which would otherwise go
      through float).
    - Timestamps are always returned timezone-aware (UTC), including on
      SQLite, which drops tzinfo on storage.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36) for cross-database portability."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class QuantityType(TypeDecorator):
    """
    Exact Decimal quantity.

    Uses NUMERIC(28, 9) where the dialect supports decimals natively and a
    canonical string elsewhere.  Results are normalised so that
    ``Decimal("95.000000000")`` comes back as ``Decimal("95")``.
    """

    impl = Numeric(28, 9)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(28, 9, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = Decimal(value)
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return _normalise(Decimal(value))


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _normalise(value: Decimal) -> Decimal:
    # Strip trailing zeros without switching integers to exponent form
    if value == value.to_integral_value():
        return value.quantize(Decimal(1))
    return value.normalize()


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is a uuid4-generated UUID stored as String(36).
        - Decimal maps to QuantityType, datetime to UTCDateTime.
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: QuantityType(),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )
