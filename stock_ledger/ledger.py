"""
StockLedger -- composition root of the stock ledger.

Responsibility:
    Wires gateway, locks, store, ledger, mutation service, count engine and
    selector together from one injected PersistenceGateway, and hands
    callers exactly what they may use: read-only views of levels and
    transactions, the mutation service, the count engine and reports.

Architecture position:
    Ledger > Entry point.  The only module that constructs services.

Invariants enforced:
    - Callers cannot write levels or transactions directly: ``levels`` and
      ``transactions`` expose read methods only, so every stock change goes
      through ``mutations`` (or ``counts.finalize``).
    - One KeyedLockManager per ledger, shared by every service, so the
      lock ordering rules hold across mutations and count finalisation.

Usage:
    ledger = StockLedger.in_memory()
    ledger.mutations.apply_purchase_receipt("P1", "W1", 20, reference="PO-1")
    ledger.levels.quantity("P1", "W1")            # Decimal("20")
"""

from decimal import Decimal

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.directory import ReferenceDirectory
from stock_ledger.domain.values import StockLevel, StockTransaction, TransactionType
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.gateway.memory import InMemoryGateway
from stock_ledger.logging_config import get_logger
from stock_ledger.selectors.stock_selector import StockSelector
from stock_ledger.services.inventory_count_engine import InventoryCountEngine
from stock_ledger.services.locks import KeyedLockManager
from stock_ledger.services.stock_level_store import StockLevelStore
from stock_ledger.services.stock_mutation_service import StockMutationService
from stock_ledger.services.transaction_ledger import TransactionLedger

logger = get_logger("ledger")


class StockLevelView:
    """Read-only face of StockLevelStore."""

    def __init__(self, store: StockLevelStore):
        self._store = store

    def get(self, product_id: str, location_id: str) -> StockLevel | None:
        return self._store.get(product_id, location_id)

    def quantity(self, product_id: str, location_id: str) -> Decimal:
        return self._store.quantity(product_id, location_id)

    def get_by_product(self, product_id: str) -> list[StockLevel]:
        return self._store.get_by_product(product_id)

    def get_by_location(self, location_id: str) -> list[StockLevel]:
        return self._store.get_by_location(location_id)

    def total_quantity(self, product_id: str) -> Decimal:
        return self._store.total_quantity(product_id)


class TransactionView:
    """Read-only face of TransactionLedger."""

    def __init__(self, ledger: TransactionLedger):
        self._ledger = ledger

    def by_product(self, product_id: str) -> list[StockTransaction]:
        return self._ledger.by_product(product_id)

    def by_location(self, location_id: str) -> list[StockTransaction]:
        return self._ledger.by_location(location_id)

    def by_reference(self, reference: str) -> list[StockTransaction]:
        return self._ledger.by_reference(reference)

    def history(self, product_id=None, location_id=None, since=None, until=None,
                types: tuple[TransactionType, ...] | None = None) -> list[StockTransaction]:
        return self._ledger.history(product_id, location_id, since, until, types)

    def net_quantity(self, product_id: str, location_id: str) -> Decimal:
        return self._ledger.net_quantity(product_id, location_id)


class StockLedger:
    """Facade over the stock ledger subsystem."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        directory: ReferenceDirectory | None = None,
    ):
        self.config = config or LedgerConfig.with_defaults()
        self.clock = clock or SystemClock()
        self.gateway = gateway
        self.locks = KeyedLockManager(timeout_seconds=self.config.lock_timeout_seconds)

        self._store = StockLevelStore(gateway, self.locks, self.clock, self.config)
        self._ledger = TransactionLedger(gateway, self.clock)

        self.levels = StockLevelView(self._store)
        self.transactions = TransactionView(self._ledger)
        self.mutations = StockMutationService(
            gateway,
            self._store,
            self._ledger,
            self.locks,
            self.clock,
            self.config,
            directory=directory,
        )
        self.counts = InventoryCountEngine(
            gateway,
            self._store,
            self.mutations,
            self.locks,
            self.clock,
            self.config,
            directory=directory,
        )
        self.reports = StockSelector(self._store, self._ledger, self.config)

        logger.info(
            "stock_ledger_initialized",
            extra={
                "gateway": type(gateway).__name__,
                "supports_transactions": gateway.supports_transactions,
                "directory": directory is not None,
            },
        )

    def set_min_stock_level(self, product_id: str, location_id: str, minimum) -> StockLevel:
        """Set a level's low-stock threshold; not a stock movement."""
        return self._store.set_min_stock_level(product_id, location_id, minimum)

    @classmethod
    def in_memory(
        cls,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        directory: ReferenceDirectory | None = None,
    ) -> "StockLedger":
        return cls(InMemoryGateway(), config=config, clock=clock, directory=directory)

    @classmethod
    def from_url(
        cls,
        database_url: str,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        directory: ReferenceDirectory | None = None,
    ) -> "StockLedger":
        """Ledger on a SQL database; tables are created if missing."""
        from stock_ledger.db.engine import create_tables, get_session_factory, init_engine_from_url
        from stock_ledger.gateway.sql import SqlAlchemyGateway

        engine = init_engine_from_url(database_url)
        create_tables(engine)
        return cls(
            SqlAlchemyGateway(get_session_factory(engine)),
            config=config,
            clock=clock,
            directory=directory,
        )
