"""
Ledger Invariants Contract.

These invariants are structural law for the stock ledger.  No configuration
value may switch them off; ``LedgerConfig`` only decides *what* is allowed
(for example negative stock), never *whether* these rules apply.

This module exists solely to declare the invariants explicitly.  The
enforcement is distributed across TransactionLedger, StockMutationService,
KeyedLockManager, the persistence gateways and the ORM immutability
listeners.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the ledger."""

    BRACKETED_DELTA = "bracketed_delta"
    """Every entry satisfies new_quantity == previous_quantity + quantity.
    Enforced by TransactionLedger.append()."""

    LIVE_PREVIOUS = "live_previous"
    """previous_quantity equals the stored level immediately before the
    mutation.  Enforced by TransactionLedger.append() against the live
    store and by the version compare-and-swap on StockLevel writes."""

    SUM_OF_DELTAS = "sum_of_deltas"
    """A level's quantity equals the sum of all ledger deltas for its pair.
    Verified by StockSelector.verify_ledger()."""

    APPEND_ONLY = "append_only"
    """Ledger entries are never updated or deleted.  Enforced by the
    gateway contract (no update/delete operation) and by ORM listeners
    (stock_ledger.db.immutability)."""

    ATOMIC_PAIR = "atomic_pair"
    """The level write and the ledger append commit together or not at
    all.  Enforced by PersistenceGateway.atomic()."""

    SINGLE_WRITER = "single_writer"
    """Only StockMutationService writes levels or ledger entries.  Enforced
    by the StockLedger facade exposing read-only views to callers."""

    KEY_SERIALISATION = "key_serialisation"
    """Mutations of one (product, location) pair are serialised; multi-key
    operations lock in a fixed global order.  Enforced by
    KeyedLockManager."""


ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)
