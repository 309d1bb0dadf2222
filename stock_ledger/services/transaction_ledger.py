"""
TransactionLedger -- append-only log of stock movements.

Responsibility:
    Validates and appends ledger entries and answers history queries.  It
    is the only code path that creates StockTransaction rows.

Architecture position:
    Ledger > Services.  Called by StockMutationService inside the same
    atomic unit as the level write; read by selectors and reporting.

Invariants enforced:
    BRACKETED_DELTA -- ``new_quantity == previous_quantity + quantity``.
    LIVE_PREVIOUS   -- ``previous_quantity`` equals the stored level (0 when
                       absent) at the moment of append.
    Direction       -- inbound types carry positive deltas, outbound types
                       negative; adjustments may carry either sign or zero.
    APPEND_ONLY     -- no update or delete method exists; corrections are
                       compensating entries.

Failure modes:
    - InvariantViolationError for any check above.  Logged at ERROR before
      raising; nothing is written.

Audit relevance:
    Every append is logged as ``ledger_entry_appended`` with its sequence.
"""

from datetime import datetime
from decimal import Decimal

from stock_ledger.domain.clock import Clock
from stock_ledger.domain.values import ZERO, LedgerEntry, StockTransaction, TransactionType
from stock_ledger.exceptions import InvariantViolationError
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.invariants import LedgerInvariant
from stock_ledger.logging_config import get_logger

logger = get_logger("services.transaction_ledger")


class TransactionLedger:
    """Append-only stock transaction log."""

    def __init__(self, gateway: PersistenceGateway, clock: Clock):
        self._gateway = gateway
        self._clock = clock

    def append(self, entry: LedgerEntry) -> StockTransaction:
        """
        Validate ``entry`` against the live store and persist it.

        Preconditions: the caller holds the entry's key lock.
        Postconditions: the returned transaction carries a fresh id, the
            next sequence number and ``created_at`` from the clock.

        Raises:
            InvariantViolationError: The entry is inconsistent with itself
                or with the stored level.
        """
        with self._gateway.atomic():
            self._check_direction(entry)

            if not entry.is_bracketed:
                self._violation(
                    entry,
                    LedgerInvariant.BRACKETED_DELTA,
                    expected=entry.previous_quantity + entry.quantity,
                    actual=entry.new_quantity,
                )

            live = self._gateway.get_level(entry.product_id, entry.location_id)
            live_quantity = live.quantity if live is not None else ZERO
            if entry.previous_quantity != live_quantity:
                self._violation(
                    entry,
                    LedgerInvariant.LIVE_PREVIOUS,
                    expected=live_quantity,
                    actual=entry.previous_quantity,
                )

            transaction = self._gateway.append_transaction(entry, self._clock.now())

        logger.debug(
            "ledger_entry_appended",
            extra={
                "transaction_id": str(transaction.id),
                "sequence": transaction.sequence,
                "type": transaction.type.value,
                "product_id": transaction.product_id,
                "location_id": transaction.location_id,
                "quantity": str(transaction.quantity),
            },
        )
        return transaction

    def _check_direction(self, entry: LedgerEntry) -> None:
        direction = entry.type.direction
        if direction > 0 and entry.quantity <= ZERO:
            self._violation(entry, "inbound entry with non-positive quantity", actual=entry.quantity)
        if direction < 0 and entry.quantity >= ZERO:
            self._violation(entry, "outbound entry with non-negative quantity", actual=entry.quantity)

    def _violation(
        self,
        entry: LedgerEntry,
        rule: LedgerInvariant | str,
        expected: Decimal | None = None,
        actual: Decimal | None = None,
    ) -> None:
        reason = rule.value if isinstance(rule, LedgerInvariant) else rule
        logger.error(
            "ledger_invariant_violation",
            extra={
                "invariant": reason,
                "product_id": entry.product_id,
                "location_id": entry.location_id,
                "type": entry.type.value,
                "expected": str(expected) if expected is not None else None,
                "actual": str(actual) if actual is not None else None,
            },
        )
        raise InvariantViolationError(
            entry.product_id,
            entry.location_id,
            reason,
            expected=str(expected) if expected is not None else None,
            actual=str(actual) if actual is not None else None,
        )

    # -- queries ------------------------------------------------------------

    def by_product(self, product_id: str) -> list[StockTransaction]:
        return self._gateway.transactions(product_id=product_id)

    def by_location(self, location_id: str) -> list[StockTransaction]:
        return self._gateway.transactions(location_id=location_id)

    def by_reference(self, reference: str) -> list[StockTransaction]:
        return self._gateway.transactions(reference=reference)

    def for_pair(self, product_id: str, location_id: str) -> list[StockTransaction]:
        return self._gateway.transactions(product_id=product_id, location_id=location_id)

    def history(
        self,
        product_id: str | None = None,
        location_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        types: tuple[TransactionType, ...] | None = None,
    ) -> list[StockTransaction]:
        """Filtered movement history in creation order (``until`` exclusive)."""
        return self._gateway.transactions(
            product_id=product_id,
            location_id=location_id,
            since=since,
            until=until,
            types=types,
        )

    def all(self) -> list[StockTransaction]:
        return self._gateway.transactions()

    def net_quantity(self, product_id: str, location_id: str) -> Decimal:
        """Sum of every delta recorded for the pair."""
        return sum((txn.quantity for txn in self.for_pair(product_id, location_id)), ZERO)
