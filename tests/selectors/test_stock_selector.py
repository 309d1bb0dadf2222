"""Tests for StockSelector reporting queries and the ledger audit."""

from datetime import timedelta
from decimal import Decimal

import pytest

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.values import TransactionType
from stock_ledger.ledger import StockLedger
from stock_ledger.selectors.stock_selector import StockStatus


@pytest.fixture
def stocked(ledger):
    ledger.mutations.seed_opening_balance("P1", "W1", 100)
    ledger.mutations.seed_opening_balance("P2", "W1", 4)
    ledger.mutations.seed_opening_balance("P3", "W1", 1)
    ledger.mutations.apply_sale("P3", "W1", 1)
    ledger.mutations.seed_opening_balance("P1", "W2", 12)
    return ledger


class TestLowStock:

    def test_default_threshold(self, stocked):
        items = stocked.reports.low_stock()
        assert [(i.product_id, i.location_id, i.status) for i in items] == [
            ("P2", "W1", StockStatus.LOW_STOCK),
            ("P3", "W1", StockStatus.OUT_OF_STOCK),
        ]
        assert items[0].threshold == Decimal("10")

    def test_level_minimum_overrides_default(self, stocked):
        stocked.set_min_stock_level("P1", "W2", 15)
        stocked.set_min_stock_level("P2", "W1", 2)

        items = {(i.product_id, i.location_id): i for i in stocked.reports.low_stock()}

        assert items[("P1", "W2")].threshold == Decimal("15")
        assert ("P2", "W1") not in items

    def test_filter_by_location(self, stocked):
        assert stocked.reports.low_stock(location_id="W2") == []

    def test_negative_level_is_out_of_stock(self, ledger):
        ledger.mutations.apply_sale("P1", "W1", 2)
        assert ledger.reports.low_stock()[0].status == StockStatus.OUT_OF_STOCK

    def test_alerts_disabled(self, clock):
        ledger = StockLedger.in_memory(config=LedgerConfig(enable_low_stock_alerts=False), clock=clock)
        ledger.mutations.apply_entry("P1", "W1", 1)
        assert ledger.reports.low_stock() == []

    def test_logs_detection(self, stocked, captured_logs):
        stocked.reports.low_stock()
        detected = [r for r in captured_logs() if r["message"] == "low_stock_detected"]
        assert detected[0]["items"] == 2


class TestSummary:

    def test_summary_by_location(self, stocked):
        summaries = stocked.reports.stock_summary_by_location()

        assert [s.location_id for s in summaries] == ["W1", "W2"]
        w1 = summaries[0]
        assert w1.product_count == 3
        assert w1.total_quantity == Decimal("104")
        assert w1.low_stock_count == 1
        assert w1.out_of_stock_count == 1

    def test_stock_status(self, stocked):
        level = stocked.levels.get("P1", "W1")
        assert stocked.reports.stock_status(level) == StockStatus.IN_STOCK


class TestMovementHistory:

    def test_filters(self, ledger, clock):
        ledger.mutations.apply_purchase_receipt("P1", "W1", 10)
        clock.advance(3600)
        ledger.mutations.apply_sale("P1", "W1", 1)
        ledger.mutations.apply_sale("P2", "W1", 1)

        sales = ledger.reports.movement_history(types=(TransactionType.SALE,))
        assert [t.product_id for t in sales] == ["P1", "P2"]

        recent = ledger.reports.movement_history(product_id="P1", since=clock.now() - timedelta(minutes=1))
        assert [t.type for t in recent] == [TransactionType.SALE]


class TestVerifyLedger:

    def test_clean_ledger(self, any_ledger):
        any_ledger.mutations.seed_opening_balance("P1", "W1", 10)
        any_ledger.mutations.apply_transfer("P1", "W1", "W2", 4, reference="TR-1")

        report = any_ledger.reports.verify_ledger()

        assert report.ok
        assert report.checked_pairs == 2
        assert report.checked_transactions == 3

    def test_drift_from_absolute_write(self, ledger, captured_logs):
        ledger.mutations.seed_opening_balance("P1", "W1", 10)
        ledger._store.set_absolute("P1", "W1", 8)
        ledger._store.set_absolute("P2", "W1", 5)

        report = ledger.reports.verify_ledger()

        assert not report.ok
        assert [(d.product_id, d.stored_quantity, d.ledger_quantity) for d in report.drifts] == [
            ("P1", Decimal("8"), Decimal("10")),
            ("P2", Decimal("5"), Decimal("0")),
        ]
        drift_logs = [r for r in captured_logs() if r["message"] == "ledger_drift_detected"]
        assert drift_logs[0]["invariant"] == "sum_of_deltas"

    def test_chain_break_after_absolute_write(self, ledger):
        ledger.mutations.seed_opening_balance("P1", "W1", 10)
        ledger._store.set_absolute("P1", "W1", 8)
        ledger.mutations.apply_sale("P1", "W1", 1)

        report = ledger.reports.verify_ledger()

        assert len(report.chain_breaks) == 1
        chain_break = report.chain_breaks[0]
        assert chain_break.expected_previous == Decimal("10")
        assert chain_break.actual_previous == Decimal("8")
