"""
Stock Ledger Value Objects (``stock_ledger.domain.values``).

Responsibility
--------------
Frozen value objects for the two nouns the ledger owns: the current
``StockLevel`` of a (product, location) pair and the immutable
``StockTransaction`` that records one quantity change.  ``LedgerEntry`` is
the unsaved draft handed to ``TransactionLedger.append``.

Invariants
----------
- Quantities are ``Decimal`` (integers for unit goods, fractions for
  weighable goods).  Floats are converted through ``str`` so that ``0.1``
  stays ``Decimal("0.1")``.
- ``StockTransaction`` is frozen; history is corrected by appending, never
  by editing.
- Bracketing (``new == previous + quantity``) is exposed as
  ``is_bracketed`` and enforced by the ledger, not at construction time, so
  that a bad draft surfaces as ``InvariantViolationError`` instead of a
  bare ``ValueError``.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from uuid import UUID

from stock_ledger.exceptions import InvalidQuantityError

ZERO = Decimal("0")

StockKey = tuple[str, str]


def as_quantity(value: Decimal | int | float | str, operation: str = "quantity") -> Decimal:
    """
    Normalise a caller-supplied quantity to ``Decimal``.

    Raises InvalidQuantityError for text that is not a number and for
    NaN or infinite values.
    """
    if isinstance(value, bool):
        raise TypeError("quantity must be numeric, got bool")
    if isinstance(value, Decimal):
        quantity = value
    else:
        try:
            quantity = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
        except InvalidOperation as exc:
            raise InvalidQuantityError(str(value), operation, "a number") from exc
    if not quantity.is_finite():
        raise InvalidQuantityError(str(value), operation, "finite")
    return quantity


class TransactionType(str, Enum):
    """Kind of quantity change recorded by a ledger entry."""

    ENTRY = "entry"
    EXIT = "exit"
    SALE = "sale"
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"

    @property
    def direction(self) -> int:
        """+1 for inbound types, -1 for outbound types, 0 when either sign is legal."""
        return _DIRECTIONS[self]


_DIRECTIONS = {
    TransactionType.ENTRY: 1,
    TransactionType.PURCHASE: 1,
    TransactionType.TRANSFER_IN: 1,
    TransactionType.EXIT: -1,
    TransactionType.SALE: -1,
    TransactionType.TRANSFER_OUT: -1,
    TransactionType.ADJUSTMENT: 0,
}


@dataclass(frozen=True)
class StockLevel:
    """
    Current quantity of a product at one location.

    Contract: Immutable snapshot.  ``version`` increases by one on every
    stored change and backs the compare-and-swap in the gateways; a level
    that has never been stored has version 0.
    """
    product_id: str
    location_id: str
    quantity: Decimal
    min_stock_level: Decimal = ZERO
    updated_at: datetime | None = None
    version: int = 0

    @property
    def key(self) -> StockKey:
        return (self.product_id, self.location_id)

    @property
    def is_negative(self) -> bool:
        return self.quantity < ZERO

    def with_quantity(self, quantity: Decimal, updated_at: datetime) -> "StockLevel":
        """Return the next version of this level holding ``quantity``."""
        return replace(
            self,
            quantity=quantity,
            updated_at=updated_at,
            version=self.version + 1,
        )

    @classmethod
    def empty(cls, product_id: str, location_id: str, min_stock_level: Decimal = ZERO) -> "StockLevel":
        """A not-yet-stored level: quantity zero, version zero."""
        return cls(
            product_id=product_id,
            location_id=location_id,
            quantity=ZERO,
            min_stock_level=min_stock_level,
        )


@dataclass(frozen=True)
class LedgerEntry:
    """
    Draft of a ledger entry, before it is appended.

    ``quantity`` is the signed delta.
    """
    product_id: str
    location_id: str
    type: TransactionType
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal
    reason: str | None = None
    reference: str | None = None
    related_id: str | None = None
    created_by: str | None = None

    @property
    def key(self) -> StockKey:
        return (self.product_id, self.location_id)

    @property
    def is_bracketed(self) -> bool:
        return self.new_quantity == self.previous_quantity + self.quantity


@dataclass(frozen=True)
class StockTransaction:
    """
    Immutable record of one quantity change.

    Contract: never updated or deleted.  ``sequence`` is the ledger-wide
    append position and defines creation order independent of clock
    resolution.
    """
    id: UUID
    sequence: int
    product_id: str
    location_id: str
    type: TransactionType
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal
    created_at: datetime
    reason: str | None = None
    reference: str | None = None
    related_id: str | None = None
    created_by: str | None = None

    @property
    def key(self) -> StockKey:
        return (self.product_id, self.location_id)

    @property
    def is_bracketed(self) -> bool:
        return self.new_quantity == self.previous_quantity + self.quantity

    @classmethod
    def from_entry(
        cls,
        entry: LedgerEntry,
        transaction_id: UUID,
        sequence: int,
        created_at: datetime,
    ) -> "StockTransaction":
        return cls(
            id=transaction_id,
            sequence=sequence,
            product_id=entry.product_id,
            location_id=entry.location_id,
            type=entry.type,
            quantity=entry.quantity,
            previous_quantity=entry.previous_quantity,
            new_quantity=entry.new_quantity,
            created_at=created_at,
            reason=entry.reason,
            reference=entry.reference,
            related_id=entry.related_id,
            created_by=entry.created_by,
        )
