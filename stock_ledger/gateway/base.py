"""
Module: stock_ledger.gateway.base
Responsibility: Abstract persistence contract behind the stock level store,
    the transaction ledger and the count engine.
Architecture position: Ledger > Gateway.  May import from domain/ and
    exceptions.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - put_level is a compare-and-swap: the stored version must equal
      ``expected_version`` (0 meaning "no row yet") or OptimisticLockError
      is raised and nothing is written.
    - append_transaction assigns the ledger-wide ``sequence``; transactions
      are returned in sequence order by every query.
    - There is no update or delete operation for transactions.
    - atomic() units nest: an inner unit joins the outer one, and only the
      outermost unit commits or rolls back.

Failure modes:
    - OptimisticLockError from put_level on a stale version.
    - Backend errors (SQLAlchemyError, OSError) propagate unchanged; the
      enclosing atomic unit rolls back and re-raises.

The storage backend is chosen by whoever constructs the gateway and hands
it to ``StockLedger``; nothing in the services inspects which one it got
beyond ``supports_transactions``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from uuid import UUID

from stock_ledger.domain.counts import CountStatus, InventoryCount, InventoryCountItem
from stock_ledger.domain.values import LedgerEntry, StockLevel, StockTransaction, TransactionType


class PersistenceGateway(ABC):
    """
    Durable storage for levels, transactions and counts.

    Contract:
        Synchronous get/put/append calls.  Reads inside an atomic unit see
        the unit's own uncommitted writes.

    Non-goals:
        - Transport, replication and offline queueing (see ReplicatedGateway
          for the one replication policy the ledger understands).
    """

    #: False when atomic() cannot roll back; the mutation service then
    #: compensates failed transfers with a reversing entry instead.
    supports_transactions: bool = True

    @abstractmethod
    def atomic(self) -> AbstractContextManager[None]:
        """Open (or join) an all-or-nothing unit of work."""

    # -- stock levels -------------------------------------------------------

    @abstractmethod
    def get_level(self, product_id: str, location_id: str) -> StockLevel | None:
        ...

    @abstractmethod
    def put_level(self, level: StockLevel, expected_version: int) -> None:
        """
        Store ``level`` if the stored version still equals ``expected_version``.

        Raises:
            OptimisticLockError: A concurrent writer got there first.
        """

    @abstractmethod
    def levels_for_product(self, product_id: str) -> list[StockLevel]:
        ...

    @abstractmethod
    def levels_for_location(self, location_id: str) -> list[StockLevel]:
        ...

    @abstractmethod
    def all_levels(self) -> list[StockLevel]:
        ...

    # -- transactions -------------------------------------------------------

    @abstractmethod
    def append_transaction(self, entry: LedgerEntry, created_at: datetime) -> StockTransaction:
        """Persist ``entry`` with a fresh id and the next sequence number."""

    @abstractmethod
    def insert_transaction(self, transaction: StockTransaction) -> None:
        """Persist an already-numbered transaction as-is (replication, imports)."""

    @abstractmethod
    def transactions(
        self,
        product_id: str | None = None,
        location_id: str | None = None,
        reference: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        types: tuple[TransactionType, ...] | None = None,
    ) -> list[StockTransaction]:
        """
        Transactions matching every given filter, in sequence order.

        ``since`` is inclusive and ``until`` exclusive.
        """

    # -- inventory counts ---------------------------------------------------

    @abstractmethod
    def get_count(self, count_id: UUID) -> InventoryCount | None:
        ...

    @abstractmethod
    def put_count(self, count: InventoryCount) -> None:
        """Insert or replace a count header."""

    @abstractmethod
    def list_counts(
        self,
        status: CountStatus | None = None,
        location_id: str | None = None,
    ) -> list[InventoryCount]:
        """Counts ordered by creation time."""

    @abstractmethod
    def get_count_items(self, count_id: UUID) -> list[InventoryCountItem]:
        """Lines of a count ordered by product id."""

    @abstractmethod
    def get_count_item(self, count_id: UUID, product_id: str) -> InventoryCountItem | None:
        ...

    @abstractmethod
    def put_count_item(self, item: InventoryCountItem) -> None:
        """Insert or replace a count line."""
