"""
Module: stock_ledger.gateway.memory
Responsibility: Thread-safe in-process implementation of PersistenceGateway,
    used for tests, offline operation and as the fallback of a replicated
    store.
Architecture position: Ledger > Gateway.

Invariants enforced:
    - Writes made inside an atomic unit are staged per thread and become
      visible to other threads only when the outermost unit exits cleanly.
    - Commit re-checks every staged level against the committed version, so
      a unit that lost a race raises OptimisticLockError and writes nothing.
    - Sequence numbers are handed out under the store lock; a rolled-back
      unit leaves a gap, never a duplicate.

With ``transactional=False`` the gateway behaves like a store without
transaction support: atomic() is a no-op and every write is immediately
visible, which is what the transfer compensation path is built for.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator
from uuid import UUID, uuid4

from stock_ledger.domain.counts import CountStatus, InventoryCount, InventoryCountItem
from stock_ledger.domain.values import (
    LedgerEntry,
    StockKey,
    StockLevel,
    StockTransaction,
    TransactionType,
)
from stock_ledger.exceptions import OptimisticLockError
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.logging_config import get_logger

logger = get_logger("gateway.memory")


@dataclass
class _Unit:
    """Writes staged by one thread's open atomic unit."""
    levels: dict[StockKey, StockLevel] = field(default_factory=dict)
    base_versions: dict[StockKey, int] = field(default_factory=dict)
    transactions: list[StockTransaction] = field(default_factory=list)
    counts: dict[UUID, InventoryCount] = field(default_factory=dict)
    items: dict[tuple[UUID, str], InventoryCountItem] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.levels or self.transactions or self.counts or self.items)


class InMemoryGateway(PersistenceGateway):
    """Dictionary-backed store with per-thread staged atomic units."""

    def __init__(self, transactional: bool = True):
        self.supports_transactions = transactional
        self._lock = threading.RLock()
        self._local = threading.local()
        self._levels: dict[StockKey, StockLevel] = {}
        self._transactions: list[StockTransaction] = []
        self._counts: dict[UUID, InventoryCount] = {}
        self._items: dict[tuple[UUID, str], InventoryCountItem] = {}
        self._sequence = 0

    # -- units of work ------------------------------------------------------

    def _unit(self) -> _Unit | None:
        return getattr(self._local, "unit", None)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if not self.supports_transactions or self._unit() is not None:
            yield
            return

        unit = _Unit()
        self._local.unit = unit
        try:
            yield
            self._commit(unit)
        finally:
            self._local.unit = None

    def _commit(self, unit: _Unit) -> None:
        if unit.is_empty:
            return
        with self._lock:
            for key, expected in unit.base_versions.items():
                committed = self._levels.get(key)
                actual = committed.version if committed else 0
                if actual != expected:
                    logger.warning(
                        "memory_unit_conflict",
                        extra={"product_id": key[0], "location_id": key[1]},
                    )
                    raise OptimisticLockError(key[0], key[1], expected, actual)
            self._levels.update(unit.levels)
            self._transactions.extend(unit.transactions)
            self._counts.update(unit.counts)
            self._items.update(unit.items)
        logger.debug(
            "memory_unit_committed",
            extra={
                "levels": len(unit.levels),
                "transactions": len(unit.transactions),
            },
        )

    # -- stock levels -------------------------------------------------------

    def _visible_levels(self) -> dict[StockKey, StockLevel]:
        with self._lock:
            levels = dict(self._levels)
        unit = self._unit()
        if unit is not None:
            levels.update(unit.levels)
        return levels

    def get_level(self, product_id: str, location_id: str) -> StockLevel | None:
        key = (product_id, location_id)
        unit = self._unit()
        if unit is not None and key in unit.levels:
            return unit.levels[key]
        with self._lock:
            return self._levels.get(key)

    def put_level(self, level: StockLevel, expected_version: int) -> None:
        with self._lock:
            current = self.get_level(level.product_id, level.location_id)
            actual = current.version if current else 0
            if actual != expected_version:
                raise OptimisticLockError(
                    level.product_id, level.location_id, expected_version, actual
                )
            unit = self._unit()
            if unit is None:
                self._levels[level.key] = level
                return
            unit.base_versions.setdefault(level.key, expected_version)
            unit.levels[level.key] = level

    def levels_for_product(self, product_id: str) -> list[StockLevel]:
        return sorted(
            (lvl for lvl in self._visible_levels().values() if lvl.product_id == product_id),
            key=lambda lvl: lvl.location_id,
        )

    def levels_for_location(self, location_id: str) -> list[StockLevel]:
        return sorted(
            (lvl for lvl in self._visible_levels().values() if lvl.location_id == location_id),
            key=lambda lvl: lvl.product_id,
        )

    def all_levels(self) -> list[StockLevel]:
        return sorted(self._visible_levels().values(), key=lambda lvl: lvl.key)

    # -- transactions -------------------------------------------------------

    def _stage_transaction(self, transaction: StockTransaction) -> None:
        unit = self._unit()
        if unit is None:
            self._transactions.append(transaction)
        else:
            unit.transactions.append(transaction)

    def append_transaction(self, entry: LedgerEntry, created_at: datetime) -> StockTransaction:
        with self._lock:
            self._sequence += 1
            transaction = StockTransaction.from_entry(
                entry,
                transaction_id=uuid4(),
                sequence=self._sequence,
                created_at=created_at,
            )
            self._stage_transaction(transaction)
        return transaction

    def insert_transaction(self, transaction: StockTransaction) -> None:
        with self._lock:
            self._sequence = max(self._sequence, transaction.sequence)
            self._stage_transaction(transaction)

    def transactions(
        self,
        product_id: str | None = None,
        location_id: str | None = None,
        reference: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        types: tuple[TransactionType, ...] | None = None,
    ) -> list[StockTransaction]:
        with self._lock:
            candidates = list(self._transactions)
        unit = self._unit()
        if unit is not None:
            candidates.extend(unit.transactions)

        def matches(txn: StockTransaction) -> bool:
            if product_id is not None and txn.product_id != product_id:
                return False
            if location_id is not None and txn.location_id != location_id:
                return False
            if reference is not None and txn.reference != reference:
                return False
            if since is not None and txn.created_at < since:
                return False
            if until is not None and txn.created_at >= until:
                return False
            return types is None or txn.type in types

        return sorted(filter(matches, candidates), key=lambda txn: txn.sequence)

    # -- inventory counts ---------------------------------------------------

    def get_count(self, count_id: UUID) -> InventoryCount | None:
        unit = self._unit()
        if unit is not None and count_id in unit.counts:
            return unit.counts[count_id]
        with self._lock:
            return self._counts.get(count_id)

    def put_count(self, count: InventoryCount) -> None:
        unit = self._unit()
        if unit is not None:
            unit.counts[count.id] = count
            return
        with self._lock:
            self._counts[count.id] = count

    def list_counts(
        self,
        status: CountStatus | None = None,
        location_id: str | None = None,
    ) -> list[InventoryCount]:
        with self._lock:
            counts = dict(self._counts)
        unit = self._unit()
        if unit is not None:
            counts.update(unit.counts)
        selected = [
            c for c in counts.values()
            if (status is None or c.status == status)
            and (location_id is None or c.location_id == location_id)
        ]
        return sorted(
            selected,
            key=lambda c: (c.created_at.timestamp() if c.created_at else 0.0, str(c.id)),
        )

    def _visible_items(self) -> dict[tuple[UUID, str], InventoryCountItem]:
        with self._lock:
            items = dict(self._items)
        unit = self._unit()
        if unit is not None:
            items.update(unit.items)
        return items

    def get_count_items(self, count_id: UUID) -> list[InventoryCountItem]:
        return sorted(
            (item for (cid, _), item in self._visible_items().items() if cid == count_id),
            key=lambda item: item.product_id,
        )

    def get_count_item(self, count_id: UUID, product_id: str) -> InventoryCountItem | None:
        return self._visible_items().get((count_id, product_id))

    def put_count_item(self, item: InventoryCountItem) -> None:
        key = (item.count_id, item.product_id)
        unit = self._unit()
        if unit is not None:
            unit.items[key] = item
            return
        with self._lock:
            self._items[key] = item
