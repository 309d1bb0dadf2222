"""
Module: stock_ledger.gateway.sql
Responsibility: PersistenceGateway on SQLAlchemy 2.0 sessions.
Architecture position: Ledger > Gateway.  May import from db/ and models/.

Invariants enforced:
    - One session per thread per outermost atomic unit; nested units join
      it.  The unit commits on clean exit and rolls back (and re-raises) on
      any exception, through db.engine.session_scope.
    - Level writes are ``UPDATE ... WHERE version = :expected``; zero rows
      updated means a concurrent writer won, reported as
      OptimisticLockError.
    - Transaction sequence numbers come from the locked counter row in
      models/sequence.py, never from MAX(sequence) + 1.
    - Reads use populate_existing so that rows changed by the versioned
      UPDATE are never served stale from the identity map.

Failure modes:
    - OptimisticLockError on a stale level version (including two first
      inserts of the same pair racing on the UNIQUE constraint).
    - ImmutabilityViolationError from the ORM listeners when a count row is
      written after completion.
    - SQLAlchemyError for connectivity problems, re-raised after rollback.
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from stock_ledger.db.engine import session_scope
from stock_ledger.domain.counts import CountStatus, InventoryCount, InventoryCountItem
from stock_ledger.domain.values import LedgerEntry, StockLevel, StockTransaction, TransactionType
from stock_ledger.exceptions import OptimisticLockError
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.logging_config import get_logger
from stock_ledger.models.inventory_count import InventoryCountItemModel, InventoryCountModel
from stock_ledger.models.sequence import (
    STOCK_TRANSACTION_SEQUENCE,
    advance_sequence_to,
    next_sequence_value,
)
from stock_ledger.models.stock_level import StockLevelModel
from stock_ledger.models.stock_transaction import StockTransactionModel

logger = get_logger("gateway.sql")


class SqlAlchemyGateway(PersistenceGateway):
    """
    Relational store for the ledger.

    The session factory is injected; the gateway never decides which
    database it talks to.

        engine = init_engine_from_url("postgresql://...")
        create_tables(engine)
        gateway = SqlAlchemyGateway(get_session_factory(engine))
    """

    supports_transactions = True

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._local = threading.local()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return

        with session_scope(self._session_factory) as session:
            self._local.session = session
            try:
                yield
            finally:
                self._local.session = None

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self.atomic():
            yield self._local.session

    # -- stock levels -------------------------------------------------------

    def _level_row(self, session: Session, product_id: str, location_id: str) -> StockLevelModel | None:
        return session.execute(
            select(StockLevelModel)
            .where(
                StockLevelModel.product_id == product_id,
                StockLevelModel.location_id == location_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_level(self, product_id: str, location_id: str) -> StockLevel | None:
        with self._session() as session:
            row = self._level_row(session, product_id, location_id)
            return row.to_dto() if row is not None else None

    def put_level(self, level: StockLevel, expected_version: int) -> None:
        with self._session() as session:
            if expected_version == 0:
                self._insert_level(session, level)
                return

            result = session.execute(
                update(StockLevelModel)
                .where(
                    StockLevelModel.product_id == level.product_id,
                    StockLevelModel.location_id == level.location_id,
                    StockLevelModel.version == expected_version,
                )
                .values(
                    quantity=level.quantity,
                    min_stock_level=level.min_stock_level,
                    updated_at=level.updated_at,
                    version=level.version,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                row = self._level_row(session, level.product_id, level.location_id)
                actual = row.version if row is not None else 0
                logger.warning(
                    "stock_level_version_conflict",
                    extra={
                        "product_id": level.product_id,
                        "location_id": level.location_id,
                        "expected_version": expected_version,
                        "actual_version": actual,
                    },
                )
                raise OptimisticLockError(
                    level.product_id, level.location_id, expected_version, actual
                )

    def _insert_level(self, session: Session, level: StockLevel) -> None:
        savepoint = session.begin_nested()
        try:
            session.add(StockLevelModel.from_dto(level))
            session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            row = self._level_row(session, level.product_id, level.location_id)
            raise OptimisticLockError(
                level.product_id,
                level.location_id,
                0,
                row.version if row is not None else 0,
            ) from None

    def levels_for_product(self, product_id: str) -> list[StockLevel]:
        with self._session() as session:
            rows = session.execute(
                select(StockLevelModel)
                .where(StockLevelModel.product_id == product_id)
                .order_by(StockLevelModel.location_id)
                .execution_options(populate_existing=True)
            ).scalars()
            return [row.to_dto() for row in rows]

    def levels_for_location(self, location_id: str) -> list[StockLevel]:
        with self._session() as session:
            rows = session.execute(
                select(StockLevelModel)
                .where(StockLevelModel.location_id == location_id)
                .order_by(StockLevelModel.product_id)
                .execution_options(populate_existing=True)
            ).scalars()
            return [row.to_dto() for row in rows]

    def all_levels(self) -> list[StockLevel]:
        with self._session() as session:
            rows = session.execute(
                select(StockLevelModel)
                .order_by(StockLevelModel.product_id, StockLevelModel.location_id)
                .execution_options(populate_existing=True)
            ).scalars()
            return [row.to_dto() for row in rows]

    # -- transactions -------------------------------------------------------

    def append_transaction(self, entry: LedgerEntry, created_at: datetime) -> StockTransaction:
        with self._session() as session:
            sequence = next_sequence_value(session, STOCK_TRANSACTION_SEQUENCE)
            transaction = StockTransaction.from_entry(
                entry,
                transaction_id=uuid4(),
                sequence=sequence,
                created_at=created_at,
            )
            session.add(StockTransactionModel.from_dto(transaction))
            session.flush()
            return transaction

    def insert_transaction(self, transaction: StockTransaction) -> None:
        with self._session() as session:
            advance_sequence_to(session, STOCK_TRANSACTION_SEQUENCE, transaction.sequence)
            session.add(StockTransactionModel.from_dto(transaction))
            session.flush()

    def transactions(
        self,
        product_id: str | None = None,
        location_id: str | None = None,
        reference: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        types: tuple[TransactionType, ...] | None = None,
    ) -> list[StockTransaction]:
        stmt = select(StockTransactionModel)
        if product_id is not None:
            stmt = stmt.where(StockTransactionModel.product_id == product_id)
        if location_id is not None:
            stmt = stmt.where(StockTransactionModel.location_id == location_id)
        if reference is not None:
            stmt = stmt.where(StockTransactionModel.reference == reference)
        if since is not None:
            stmt = stmt.where(StockTransactionModel.created_at >= since)
        if until is not None:
            stmt = stmt.where(StockTransactionModel.created_at < until)
        if types is not None:
            stmt = stmt.where(StockTransactionModel.type.in_([t.value for t in types]))

        with self._session() as session:
            rows = session.execute(stmt.order_by(StockTransactionModel.sequence)).scalars()
            return [row.to_dto() for row in rows]

    # -- inventory counts ---------------------------------------------------

    def get_count(self, count_id: UUID) -> InventoryCount | None:
        with self._session() as session:
            row = session.get(InventoryCountModel, count_id, populate_existing=True)
            return row.to_dto() if row is not None else None

    def put_count(self, count: InventoryCount) -> None:
        with self._session() as session:
            row = session.get(InventoryCountModel, count.id)
            if row is None:
                session.add(InventoryCountModel.from_dto(count))
            else:
                row.apply_dto(count)
            session.flush()

    def list_counts(
        self,
        status: CountStatus | None = None,
        location_id: str | None = None,
    ) -> list[InventoryCount]:
        stmt = select(InventoryCountModel)
        if status is not None:
            stmt = stmt.where(InventoryCountModel.status == status.value)
        if location_id is not None:
            stmt = stmt.where(InventoryCountModel.location_id == location_id)
        stmt = stmt.order_by(InventoryCountModel.created_at, InventoryCountModel.id)

        with self._session() as session:
            rows = session.execute(stmt.execution_options(populate_existing=True)).scalars()
            return [row.to_dto() for row in rows]

    def _item_row(self, session: Session, count_id: UUID, product_id: str) -> InventoryCountItemModel | None:
        return session.execute(
            select(InventoryCountItemModel)
            .where(
                InventoryCountItemModel.count_id == count_id,
                InventoryCountItemModel.product_id == product_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_count_items(self, count_id: UUID) -> list[InventoryCountItem]:
        with self._session() as session:
            rows = session.execute(
                select(InventoryCountItemModel)
                .where(InventoryCountItemModel.count_id == count_id)
                .order_by(InventoryCountItemModel.product_id)
                .execution_options(populate_existing=True)
            ).scalars()
            return [row.to_dto() for row in rows]

    def get_count_item(self, count_id: UUID, product_id: str) -> InventoryCountItem | None:
        with self._session() as session:
            row = self._item_row(session, count_id, product_id)
            return row.to_dto() if row is not None else None

    def put_count_item(self, item: InventoryCountItem) -> None:
        with self._session() as session:
            row = self._item_row(session, item.count_id, item.product_id)
            if row is None:
                session.add(InventoryCountItemModel.from_dto(item))
            else:
                row.apply_dto(item)
            session.flush()
