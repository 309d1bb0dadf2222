"""Database layer - engine, base classes, portable types and immutability."""

from stock_ledger.db.base import Base, QuantityType, UTCDateTime, UUIDString
from stock_ledger.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "QuantityType",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
]
