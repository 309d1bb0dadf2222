"""
Module: stock_ledger.selectors.stock_selector
Responsibility: Read-only reporting over stock levels and the ledger: low
    stock, per-location summaries, movement history and the ledger audit.
Architecture position: Ledger > Selectors.  May import from services/
    (read methods only) and domain/.  MUST NOT mutate anything.

Invariants enforced:
    - Read-only: no method here writes a level, a transaction or a count.
    - verify_ledger recomputes every pair from the ledger and never trusts
      the stored quantity.

Audit relevance:
    verify_ledger is the check behind "a level equals the sum of its
    deltas".  Drift means a write bypassed the mutation service (for
    example StockLevelStore.set_absolute) or storage was edited directly.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.values import ZERO, StockKey, StockLevel, StockTransaction, TransactionType
from stock_ledger.invariants import LedgerInvariant
from stock_ledger.logging_config import get_logger
from stock_ledger.services.stock_level_store import StockLevelStore
from stock_ledger.services.transaction_ledger import TransactionLedger

logger = get_logger("selectors.stock")


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


@dataclass(frozen=True)
class LowStockItem:
    product_id: str
    location_id: str
    quantity: Decimal
    threshold: Decimal
    status: StockStatus


@dataclass(frozen=True)
class LocationStockSummary:
    location_id: str
    product_count: int
    total_quantity: Decimal
    low_stock_count: int
    out_of_stock_count: int


@dataclass(frozen=True)
class LedgerDrift:
    """A pair whose stored quantity disagrees with its ledger."""
    product_id: str
    location_id: str
    stored_quantity: Decimal
    ledger_quantity: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored_quantity - self.ledger_quantity


@dataclass(frozen=True)
class ChainBreak:
    """An entry whose previous quantity is not its predecessor's new quantity."""
    transaction_id: UUID
    product_id: str
    location_id: str
    expected_previous: Decimal
    actual_previous: Decimal


@dataclass(frozen=True)
class LedgerAuditReport:
    checked_pairs: int
    checked_transactions: int
    drifts: tuple[LedgerDrift, ...] = ()
    unbracketed: tuple[UUID, ...] = ()
    chain_breaks: tuple[ChainBreak, ...] = ()

    @property
    def ok(self) -> bool:
        return not (self.drifts or self.unbracketed or self.chain_breaks)


class StockSelector:
    """Reporting queries over the store and the ledger."""

    def __init__(self, store: StockLevelStore, ledger: TransactionLedger, config: LedgerConfig):
        self._store = store
        self._ledger = ledger
        self._config = config

    def _threshold(self, level: StockLevel) -> Decimal:
        if level.min_stock_level > ZERO:
            return level.min_stock_level
        return self._config.low_stock_threshold

    def stock_status(self, level: StockLevel) -> StockStatus:
        if level.quantity <= ZERO:
            return StockStatus.OUT_OF_STOCK
        if level.quantity <= self._threshold(level):
            return StockStatus.LOW_STOCK
        return StockStatus.IN_STOCK

    def low_stock(self, location_id: str | None = None) -> list[LowStockItem]:
        """
        Levels at or below their threshold, out-of-stock included.

        The threshold is the level's own ``min_stock_level`` when set,
        otherwise ``LedgerConfig.low_stock_threshold``.  Returns nothing
        when low-stock alerts are disabled.
        """
        if not self._config.enable_low_stock_alerts:
            return []
        levels = (
            self._store.get_by_location(location_id)
            if location_id is not None
            else self._store.all()
        )
        items = []
        for level in levels:
            status = self.stock_status(level)
            if status == StockStatus.IN_STOCK:
                continue
            items.append(
                LowStockItem(
                    product_id=level.product_id,
                    location_id=level.location_id,
                    quantity=level.quantity,
                    threshold=self._threshold(level),
                    status=status,
                )
            )
        if items:
            logger.info(
                "low_stock_detected",
                extra={"location_id": location_id, "items": len(items)},
            )
        return items

    def stock_summary_by_location(self) -> list[LocationStockSummary]:
        by_location: dict[str, list[StockLevel]] = defaultdict(list)
        for level in self._store.all():
            by_location[level.location_id].append(level)

        summaries = []
        for location_id in sorted(by_location):
            levels = by_location[location_id]
            statuses = [self.stock_status(lvl) for lvl in levels]
            summaries.append(
                LocationStockSummary(
                    location_id=location_id,
                    product_count=len(levels),
                    total_quantity=sum((lvl.quantity for lvl in levels), ZERO),
                    low_stock_count=statuses.count(StockStatus.LOW_STOCK),
                    out_of_stock_count=statuses.count(StockStatus.OUT_OF_STOCK),
                )
            )
        return summaries

    def movement_history(
        self,
        product_id: str | None = None,
        location_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        types: tuple[TransactionType, ...] | None = None,
    ) -> list[StockTransaction]:
        return self._ledger.history(
            product_id=product_id,
            location_id=location_id,
            since=since,
            until=until,
            types=types,
        )

    def verify_ledger(self) -> LedgerAuditReport:
        """Recompute every pair from its ledger and compare with the store."""
        transactions = self._ledger.all()
        sums: dict[StockKey, Decimal] = defaultdict(lambda: ZERO)
        last_new: dict[StockKey, Decimal] = {}
        unbracketed: list[UUID] = []
        chain_breaks: list[ChainBreak] = []

        for txn in transactions:
            sums[txn.key] += txn.quantity
            if not txn.is_bracketed:
                unbracketed.append(txn.id)
            expected_previous = last_new.get(txn.key, ZERO)
            if txn.previous_quantity != expected_previous:
                chain_breaks.append(
                    ChainBreak(
                        transaction_id=txn.id,
                        product_id=txn.product_id,
                        location_id=txn.location_id,
                        expected_previous=expected_previous,
                        actual_previous=txn.previous_quantity,
                    )
                )
            last_new[txn.key] = txn.new_quantity

        stored = {level.key: level.quantity for level in self._store.all()}
        drifts = [
            LedgerDrift(
                product_id=key[0],
                location_id=key[1],
                stored_quantity=stored.get(key, ZERO),
                ledger_quantity=sums.get(key, ZERO),
            )
            for key in sorted(set(stored) | set(sums))
            if stored.get(key, ZERO) != sums.get(key, ZERO)
        ]

        report = LedgerAuditReport(
            checked_pairs=len(set(stored) | set(sums)),
            checked_transactions=len(transactions),
            drifts=tuple(drifts),
            unbracketed=tuple(unbracketed),
            chain_breaks=tuple(chain_breaks),
        )
        if report.ok:
            logger.info(
                "ledger_verified",
                extra={
                    "checked_pairs": report.checked_pairs,
                    "checked_transactions": report.checked_transactions,
                },
            )
        else:
            logger.warning(
                "ledger_drift_detected",
                extra={
                    "invariant": LedgerInvariant.SUM_OF_DELTAS.value,
                    "drifts": len(drifts),
                    "unbracketed": len(unbracketed),
                    "chain_breaks": len(chain_breaks),
                },
            )
        return report
