"""
Module: stock_ledger.gateway.replicated
Responsibility: Primary store plus a local fallback copy, with every
    disagreement between the two recorded and surfaced.
Architecture position: Ledger > Gateway.  Composes two PersistenceGateways.

Invariants enforced:
    - The primary is authoritative.  Every successful primary write is
      mirrored to the fallback with the same ids and sequence numbers.
    - A write that reaches only one store is recorded as a Divergence and
      logged at WARNING as ``store_divergence_detected``.  Nothing falls
      back silently.
    - The primary commits before the fallback.  A failed primary commit
      rolls back the fallback unit too.  A fallback commit that fails after
      the primary committed is a Divergence with operation ``commit``.
    - With ``allow_fallback=False`` a failed primary write raises
      StoreDivergenceError and the fallback is not touched.

Failure modes:
    - StoreDivergenceError when the primary fails and fallback is disallowed.
    - OptimisticLockError from the primary propagates unchanged; it is a
      concurrency outcome, not an availability problem.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from stock_ledger.domain.counts import CountStatus, InventoryCount, InventoryCountItem
from stock_ledger.domain.values import LedgerEntry, StockLevel, StockTransaction, TransactionType
from stock_ledger.exceptions import ConcurrencyError, PersistenceError, StoreDivergenceError
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.logging_config import get_logger

logger = get_logger("gateway.replicated")

# Availability failures; anything else is a real answer from the store.
_STORE_ERRORS = (PersistenceError, SQLAlchemyError, OSError)


@dataclass(frozen=True)
class Divergence:
    """One write that reached only one of the two stores."""
    operation: str
    key: str
    reason: str


class ReplicatedGateway(PersistenceGateway):
    """
    Primary + fallback stores behind one gateway.

        gateway = ReplicatedGateway(
            primary=SqlAlchemyGateway(server_sessions),
            fallback=SqlAlchemyGateway(local_sqlite_sessions),
            allow_fallback=True,
        )
    """

    def __init__(
        self,
        primary: PersistenceGateway,
        fallback: PersistenceGateway,
        allow_fallback: bool = False,
    ):
        self._primary = primary
        self._fallback = fallback
        self._allow_fallback = allow_fallback
        self._divergences: list[Divergence] = []
        self._lock = threading.Lock()
        self._local = threading.local()

    @property
    def supports_transactions(self) -> bool:
        return self._primary.supports_transactions and self._fallback.supports_transactions

    @property
    def divergences(self) -> tuple[Divergence, ...]:
        with self._lock:
            return tuple(self._divergences)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """One unit on both stores; the fallback unit encloses the primary one."""
        if getattr(self._local, "open", False):
            yield
            return

        self._local.open = True
        self._local.fallback_only = False
        primary_committed = False
        try:
            with self._fallback.atomic():
                with self._primary.atomic():
                    yield
                primary_committed = True
        except (*_STORE_ERRORS, ConcurrencyError) as exc:
            if not primary_committed or self._local.fallback_only:
                raise
            self._record("commit", "fallback", f"fallback commit failed: {exc}")
        finally:
            self._local.open = False

    def _record(self, operation: str, key: str, reason: str) -> None:
        divergence = Divergence(operation=operation, key=key, reason=reason)
        with self._lock:
            self._divergences.append(divergence)
        logger.warning(
            "store_divergence_detected",
            extra={"operation": operation, "key": key, "reason": reason},
        )

    def _write(
        self,
        operation: str,
        key: str,
        on_primary: Callable[[], Any],
        mirror: Callable[[Any], None],
        on_fallback: Callable[[], Any],
    ) -> Any:
        try:
            result = on_primary()
        except _STORE_ERRORS as exc:
            if not self._allow_fallback:
                logger.error(
                    "store_primary_write_failed",
                    extra={"operation": operation, "key": key},
                    exc_info=True,
                )
                raise StoreDivergenceError(
                    operation, key, f"primary unavailable and fallback not allowed: {exc}"
                ) from exc
            if getattr(self._local, "open", False):
                self._local.fallback_only = True
            result = on_fallback()
            self._record(operation, key, f"written to fallback only: {exc}")
            return result

        try:
            mirror(result)
        except (*_STORE_ERRORS, ConcurrencyError) as exc:
            self._record(operation, key, f"fallback mirror failed: {exc}")
        return result

    def _read(self, operation: str, on_primary: Callable[[], Any], on_fallback: Callable[[], Any]) -> Any:
        try:
            return on_primary()
        except _STORE_ERRORS:
            if not self._allow_fallback:
                raise
            logger.warning("store_fallback_read", extra={"operation": operation}, exc_info=True)
            return on_fallback()

    # -- stock levels -------------------------------------------------------

    def get_level(self, product_id: str, location_id: str) -> StockLevel | None:
        return self._read(
            "get_level",
            lambda: self._primary.get_level(product_id, location_id),
            lambda: self._fallback.get_level(product_id, location_id),
        )

    def put_level(self, level: StockLevel, expected_version: int) -> None:
        self._write(
            "put_level",
            f"{level.product_id}@{level.location_id}",
            lambda: self._primary.put_level(level, expected_version),
            lambda _: self._fallback.put_level(level, expected_version),
            lambda: self._fallback.put_level(level, expected_version),
        )

    def levels_for_product(self, product_id: str) -> list[StockLevel]:
        return self._read(
            "levels_for_product",
            lambda: self._primary.levels_for_product(product_id),
            lambda: self._fallback.levels_for_product(product_id),
        )

    def levels_for_location(self, location_id: str) -> list[StockLevel]:
        return self._read(
            "levels_for_location",
            lambda: self._primary.levels_for_location(location_id),
            lambda: self._fallback.levels_for_location(location_id),
        )

    def all_levels(self) -> list[StockLevel]:
        return self._read("all_levels", self._primary.all_levels, self._fallback.all_levels)

    # -- transactions -------------------------------------------------------

    def append_transaction(self, entry: LedgerEntry, created_at: datetime) -> StockTransaction:
        return self._write(
            "append_transaction",
            f"{entry.product_id}@{entry.location_id}",
            lambda: self._primary.append_transaction(entry, created_at),
            self._fallback.insert_transaction,
            lambda: self._fallback.append_transaction(entry, created_at),
        )

    def insert_transaction(self, transaction: StockTransaction) -> None:
        self._write(
            "insert_transaction",
            str(transaction.id),
            lambda: self._primary.insert_transaction(transaction),
            lambda _: self._fallback.insert_transaction(transaction),
            lambda: self._fallback.insert_transaction(transaction),
        )

    def transactions(
        self,
        product_id: str | None = None,
        location_id: str | None = None,
        reference: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        types: tuple[TransactionType, ...] | None = None,
    ) -> list[StockTransaction]:
        filters = dict(
            product_id=product_id,
            location_id=location_id,
            reference=reference,
            since=since,
            until=until,
            types=types,
        )
        return self._read(
            "transactions",
            lambda: self._primary.transactions(**filters),
            lambda: self._fallback.transactions(**filters),
        )

    # -- inventory counts ---------------------------------------------------

    def get_count(self, count_id: UUID) -> InventoryCount | None:
        return self._read(
            "get_count",
            lambda: self._primary.get_count(count_id),
            lambda: self._fallback.get_count(count_id),
        )

    def put_count(self, count: InventoryCount) -> None:
        self._write(
            "put_count",
            str(count.id),
            lambda: self._primary.put_count(count),
            lambda _: self._fallback.put_count(count),
            lambda: self._fallback.put_count(count),
        )

    def list_counts(
        self,
        status: CountStatus | None = None,
        location_id: str | None = None,
    ) -> list[InventoryCount]:
        return self._read(
            "list_counts",
            lambda: self._primary.list_counts(status=status, location_id=location_id),
            lambda: self._fallback.list_counts(status=status, location_id=location_id),
        )

    def get_count_items(self, count_id: UUID) -> list[InventoryCountItem]:
        return self._read(
            "get_count_items",
            lambda: self._primary.get_count_items(count_id),
            lambda: self._fallback.get_count_items(count_id),
        )

    def get_count_item(self, count_id: UUID, product_id: str) -> InventoryCountItem | None:
        return self._read(
            "get_count_item",
            lambda: self._primary.get_count_item(count_id, product_id),
            lambda: self._fallback.get_count_item(count_id, product_id),
        )

    def put_count_item(self, item: InventoryCountItem) -> None:
        self._write(
            "put_count_item",
            f"{item.count_id}/{item.product_id}",
            lambda: self._primary.put_count_item(item),
            lambda _: self._fallback.put_count_item(item),
            lambda: self._fallback.put_count_item(item),
        )
