"""
Tests for TransactionLedger: append validation and history queries.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stock_ledger.domain.values import LedgerEntry, TransactionType
from stock_ledger.exceptions import InvariantViolationError


def _entry(txn_type=TransactionType.ENTRY, quantity="5", previous="0", new="5", **kwargs):
    return LedgerEntry(
        product_id=kwargs.pop("product_id", "P1"),
        location_id=kwargs.pop("location_id", "W1"),
        type=txn_type,
        quantity=Decimal(quantity),
        previous_quantity=Decimal(previous),
        new_quantity=Decimal(new),
        **kwargs,
    )


class TestAppendValidation:

    def test_unbracketed_entry_rejected(self, any_ledger, captured_logs):
        with pytest.raises(InvariantViolationError) as exc_info:
            any_ledger._ledger.append(_entry(quantity="5", previous="0", new="6"))

        error = exc_info.value
        assert error.reason == "bracketed_delta"
        assert error.expected == "5"
        assert error.actual == "6"
        assert any_ledger.transactions.by_product("P1") == []
        violations = [r for r in captured_logs() if r["message"] == "ledger_invariant_violation"]
        assert violations[0]["level"] == "ERROR"

    def test_stale_previous_rejected(self, any_ledger):
        any_ledger.mutations.seed_opening_balance("P1", "W1", 10)

        with pytest.raises(InvariantViolationError) as exc_info:
            any_ledger._ledger.append(
                _entry(TransactionType.SALE, quantity="-1", previous="9", new="8")
            )

        assert exc_info.value.reason == "live_previous"
        assert exc_info.value.expected == "10"
        assert len(any_ledger.transactions.by_product("P1")) == 1

    @pytest.mark.parametrize(
        "txn_type, quantity, previous, new",
        [
            (TransactionType.PURCHASE, "-1", "0", "-1"),
            (TransactionType.TRANSFER_IN, "0", "0", "0"),
            (TransactionType.SALE, "1", "0", "1"),
            (TransactionType.EXIT, "0", "0", "0"),
        ],
    )
    def test_wrong_direction_rejected(self, ledger, txn_type, quantity, previous, new):
        with pytest.raises(InvariantViolationError):
            ledger._ledger.append(_entry(txn_type, quantity, previous, new))

    def test_adjustment_accepts_any_sign(self, ledger):
        ledger._ledger.append(_entry(TransactionType.ADJUSTMENT, "0", "0", "0"))
        ledger._ledger.append(_entry(TransactionType.ADJUSTMENT, "-2", "0", "-2"))
        assert len(ledger.transactions.by_product("P1")) == 2


class TestAppend:

    def test_sequence_increases(self, any_ledger):
        first = any_ledger.mutations.apply_entry("P1", "W1", 1)
        second = any_ledger.mutations.apply_entry("P2", "W1", 1)
        third = any_ledger.mutations.apply_entry("P1", "W1", 1)
        assert first.sequence < second.sequence < third.sequence

    def test_created_at_from_clock(self, ledger, clock):
        clock.advance(3600)
        txn = ledger.mutations.apply_entry("P1", "W1", 1)
        assert txn.created_at == clock.now()


class TestQueries:

    @pytest.fixture
    def populated(self, any_ledger, clock):
        any_ledger.mutations.apply_purchase_receipt("P1", "W1", 50, reference="PO-1")
        clock.advance(60)
        any_ledger.mutations.apply_sale("P1", "W1", 5, reference="INV-1")
        clock.advance(60)
        any_ledger.mutations.apply_transfer("P1", "W1", "W2", 10, reference="TR-1")
        clock.advance(60)
        any_ledger.mutations.apply_purchase_receipt("P2", "W2", 8, reference="PO-2")
        return any_ledger

    def test_by_product(self, populated):
        types = [t.type for t in populated.transactions.by_product("P1")]
        assert types == [
            TransactionType.PURCHASE,
            TransactionType.SALE,
            TransactionType.TRANSFER_OUT,
            TransactionType.TRANSFER_IN,
        ]

    def test_by_location(self, populated):
        assert [t.product_id for t in populated.transactions.by_location("W2")] == ["P1", "P2"]

    def test_by_reference(self, populated):
        assert len(populated.transactions.by_reference("TR-1")) == 2
        assert populated.transactions.by_reference("NOPE") == []

    def test_history_date_range(self, populated, clock):
        start = clock.now() - timedelta(seconds=150)
        end = clock.now()
        history = populated.transactions.history(since=start, until=end)
        assert [t.reference for t in history] == ["INV-1", "TR-1", "TR-1"]

    def test_history_by_type(self, populated):
        history = populated.transactions.history(
            product_id="P1",
            types=(TransactionType.SALE, TransactionType.TRANSFER_OUT),
        )
        assert [t.type for t in history] == [TransactionType.SALE, TransactionType.TRANSFER_OUT]

    def test_net_quantity_matches_levels(self, populated):
        for level in populated._store.all():
            assert populated.transactions.net_quantity(level.product_id, level.location_id) == level.quantity
