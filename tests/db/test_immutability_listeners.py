"""
ORM immutability listeners on SQLite.

Ledger rows can never be updated or deleted through the ORM; a count is
frozen once completed or cancelled, and so are the lines of a completed
count.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from stock_ledger.db.engine import get_session_factory, session_scope
from stock_ledger.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_ledger.domain.counts import CountType
from stock_ledger.exceptions import ImmutabilityViolationError
from stock_ledger.models.inventory_count import InventoryCountItemModel, InventoryCountModel
from stock_ledger.models.stock_transaction import StockTransactionModel

pytestmark = pytest.mark.sqlite


@pytest.fixture
def session_factory(sqlite_engine):
    return get_session_factory(sqlite_engine)


def _first(session, model):
    return session.execute(select(model)).scalars().first()


class TestStockTransactionImmutability:

    def test_update_blocked(self, sql_ledger, session_factory, captured_logs):
        sql_ledger.mutations.apply_purchase_receipt("P1", "W1", 10)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with session_scope(session_factory) as session:
                row = _first(session, StockTransactionModel)
                row.quantity = Decimal("11")

        assert exc_info.value.entity_type == "StockTransaction"
        assert sql_ledger.transactions.by_product("P1")[0].quantity == Decimal("10")
        assert any(r["message"] == "immutability_violation_blocked" for r in captured_logs())

    def test_delete_blocked(self, sql_ledger, session_factory):
        sql_ledger.mutations.apply_purchase_receipt("P1", "W1", 10)

        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                session.delete(_first(session, StockTransactionModel))

        assert len(sql_ledger.transactions.by_product("P1")) == 1

    def test_listeners_can_be_removed_and_restored(self, sql_ledger, session_factory):
        sql_ledger.mutations.apply_purchase_receipt("P1", "W1", 10)
        unregister_immutability_listeners()
        try:
            with session_scope(session_factory) as session:
                _first(session, StockTransactionModel).reason = "migrated"
        finally:
            register_immutability_listeners()

        assert sql_ledger.transactions.by_product("P1")[0].reason == "migrated"
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                _first(session, StockTransactionModel).reason = "again"


class TestCountImmutability:

    def _completed_count(self, ledger):
        ledger.mutations.seed_opening_balance("P1", "W1", 75)
        count = ledger.counts.create_count("Q1", CountType.FULL, "W1")
        ledger.counts.start_counting(count.id)
        ledger.counts.record_physical_count(count.id, "P1", 72)
        ledger.counts.finalize(count.id)
        return count

    def test_open_count_is_editable(self, sql_ledger, session_factory):
        count = sql_ledger.counts.create_count("Q1", CountType.PARTIAL, "W1", scope=["P1"])
        with session_scope(session_factory) as session:
            session.get(InventoryCountModel, count.id).notes = "recount aisle 4"
        assert sql_ledger.counts.get_count(count.id).notes == "recount aisle 4"

    def test_completed_header_frozen(self, sql_ledger, session_factory):
        count = self._completed_count(sql_ledger)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with session_scope(session_factory) as session:
                session.get(InventoryCountModel, count.id).status = "in_progress"

        assert exc_info.value.entity_type == "InventoryCount"

    def test_completed_count_cannot_be_deleted(self, sql_ledger, session_factory):
        count = self._completed_count(sql_ledger)
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                session.delete(session.get(InventoryCountModel, count.id))

    def test_completed_lines_frozen(self, sql_ledger, session_factory):
        self._completed_count(sql_ledger)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with session_scope(session_factory) as session:
                _first(session, InventoryCountItemModel).physical_quantity = Decimal("75")

        assert exc_info.value.entity_type == "InventoryCountItem"

    def test_cancelled_header_frozen(self, sql_ledger, session_factory):
        count = sql_ledger.counts.create_count("Q1", CountType.PARTIAL, "W1", scope=["P1"])
        sql_ledger.counts.cancel(count.id)

        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                session.get(InventoryCountModel, count.id).name = "renamed"
