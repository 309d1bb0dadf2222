"""
Tests for stock value objects (stock_ledger/domain/values.py).

Pure construction, quantity normalisation and bracketing -- no storage.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.values import (
    ZERO,
    LedgerEntry,
    StockLevel,
    StockTransaction,
    TransactionType,
    as_quantity,
)
from stock_ledger.exceptions import InvalidQuantityError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestAsQuantity:

    @pytest.mark.parametrize(
        "value, expected",
        [
            (5, Decimal("5")),
            ("2.750", Decimal("2.750")),
            (0.1, Decimal("0.1")),
            (Decimal("3"), Decimal("3")),
        ],
    )
    def test_normalises_to_decimal(self, value, expected):
        assert as_quantity(value) == expected
        assert isinstance(as_quantity(value), Decimal)

    def test_float_goes_through_str(self):
        assert as_quantity(0.1) == Decimal("0.1")
        assert as_quantity(0.1) != Decimal(0.1)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            as_quantity(True)

    @pytest.mark.parametrize(
        "value",
        ["NaN", "sNaN", "Infinity", "-Infinity", float("nan"), float("inf"), Decimal("NaN"), Decimal("-Infinity")],
    )
    def test_non_finite_rejected(self, value):
        with pytest.raises(InvalidQuantityError) as exc_info:
            as_quantity(value, "sale")
        assert exc_info.value.operation == "sale"
        assert exc_info.value.requirement == "finite"

    @pytest.mark.parametrize("value", ["abc", "", "1,5"])
    def test_non_numeric_text_rejected(self, value):
        with pytest.raises(InvalidQuantityError) as exc_info:
            as_quantity(value)
        assert exc_info.value.requirement == "a number"


class TestTransactionType:

    def test_inbound_types(self):
        for txn_type in (TransactionType.ENTRY, TransactionType.PURCHASE, TransactionType.TRANSFER_IN):
            assert txn_type.direction == 1

    def test_outbound_types(self):
        for txn_type in (TransactionType.EXIT, TransactionType.SALE, TransactionType.TRANSFER_OUT):
            assert txn_type.direction == -1

    def test_adjustment_has_no_direction(self):
        assert TransactionType.ADJUSTMENT.direction == 0

    def test_values_are_wire_strings(self):
        assert TransactionType("transfer_in") is TransactionType.TRANSFER_IN


class TestStockLevel:

    def test_empty_level(self):
        level = StockLevel.empty("P1", "W1")
        assert level.quantity == ZERO
        assert level.version == 0
        assert level.key == ("P1", "W1")

    def test_with_quantity_bumps_version(self):
        level = StockLevel("P1", "W1", Decimal("10"), version=3)
        updated = level.with_quantity(Decimal("7"), T0)
        assert updated.quantity == Decimal("7")
        assert updated.version == 4
        assert updated.updated_at == T0
        assert level.quantity == Decimal("10")

    def test_negative_flag(self):
        assert StockLevel("P1", "W1", Decimal("-2")).is_negative
        assert not StockLevel("P1", "W1", ZERO).is_negative

    def test_frozen(self):
        level = StockLevel("P1", "W1", Decimal("1"))
        with pytest.raises(FrozenInstanceError):
            level.quantity = Decimal("2")


class TestLedgerEntry:

    def test_bracketed(self):
        entry = LedgerEntry("P1", "W1", TransactionType.SALE, Decimal("-5"), Decimal("100"), Decimal("95"))
        assert entry.is_bracketed

    def test_unbracketed(self):
        entry = LedgerEntry("P1", "W1", TransactionType.SALE, Decimal("-5"), Decimal("100"), Decimal("96"))
        assert not entry.is_bracketed

    def test_transaction_from_entry_copies_fields(self):
        entry = LedgerEntry(
            "P1", "W1", TransactionType.TRANSFER_OUT, Decimal("-3"), Decimal("3"), ZERO,
            reason="transfer to W2", reference="TR-1", related_id="x", created_by="u1",
        )
        txn_id = uuid4()
        txn = StockTransaction.from_entry(entry, txn_id, 17, T0)
        assert txn.id == txn_id
        assert txn.sequence == 17
        assert txn.created_at == T0
        assert txn.reference == "TR-1"
        assert txn.created_by == "u1"
        assert txn.is_bracketed
