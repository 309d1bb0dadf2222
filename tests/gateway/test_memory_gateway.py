"""
Tests for InMemoryGateway units of work.

Covers:
- Staged writes are private to the thread until commit
- Rollback on exception
- Commit-time version re-check
- Non-transactional mode writes through immediately
"""

import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stock_ledger.domain.values import LedgerEntry, StockLevel, TransactionType
from stock_ledger.exceptions import OptimisticLockError
from stock_ledger.gateway.memory import InMemoryGateway

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _level(quantity, version=1, product_id="P1", location_id="W1"):
    return StockLevel(product_id, location_id, Decimal(quantity), version=version, updated_at=T0)


def _entry(quantity="5"):
    return LedgerEntry("P1", "W1", TransactionType.ENTRY, Decimal(quantity), Decimal("0"), Decimal(quantity))


def _read_in_thread(fn):
    result = []
    thread = threading.Thread(target=lambda: result.append(fn()))
    thread.start()
    thread.join()
    return result[0]


class TestAtomicUnits:

    def test_staged_writes_visible_only_to_owner(self):
        gateway = InMemoryGateway()
        with gateway.atomic():
            gateway.put_level(_level("5"), expected_version=0)
            gateway.append_transaction(_entry(), T0)

            assert gateway.get_level("P1", "W1").quantity == Decimal("5")
            assert _read_in_thread(lambda: gateway.get_level("P1", "W1")) is None
            assert _read_in_thread(gateway.transactions) == []

        assert _read_in_thread(lambda: gateway.get_level("P1", "W1")).quantity == Decimal("5")
        assert len(_read_in_thread(gateway.transactions)) == 1

    def test_exception_discards_unit(self):
        gateway = InMemoryGateway()
        with pytest.raises(RuntimeError):
            with gateway.atomic():
                gateway.put_level(_level("5"), expected_version=0)
                gateway.append_transaction(_entry(), T0)
                raise RuntimeError("abort")

        assert gateway.get_level("P1", "W1") is None
        assert gateway.transactions() == []

    def test_nested_units_commit_once(self):
        gateway = InMemoryGateway()
        with gateway.atomic():
            with gateway.atomic():
                gateway.put_level(_level("5"), expected_version=0)
            assert _read_in_thread(lambda: gateway.get_level("P1", "W1")) is None
        assert gateway.get_level("P1", "W1") is not None

    def test_commit_rechecks_versions(self):
        gateway = InMemoryGateway()
        gateway.put_level(_level("5"), expected_version=0)

        with pytest.raises(OptimisticLockError):
            with gateway.atomic():
                gateway.put_level(_level("6", version=2), expected_version=1)
                # another writer commits version 2 first
                _read_in_thread(lambda: gateway.put_level(_level("9", version=2), expected_version=1))

        assert gateway.get_level("P1", "W1").quantity == Decimal("9")

    def test_sequence_gap_after_rollback(self):
        gateway = InMemoryGateway()
        with pytest.raises(RuntimeError):
            with gateway.atomic():
                gateway.append_transaction(_entry(), T0)
                raise RuntimeError("abort")
        txn = gateway.append_transaction(_entry(), T0)
        assert txn.sequence == 2


class TestNonTransactional:

    def test_atomic_is_write_through(self):
        gateway = InMemoryGateway(transactional=False)
        assert gateway.supports_transactions is False

        with pytest.raises(RuntimeError):
            with gateway.atomic():
                gateway.put_level(_level("5"), expected_version=0)
                raise RuntimeError("abort")

        assert gateway.get_level("P1", "W1").quantity == Decimal("5")


class TestQueries:

    def test_insert_transaction_advances_sequence(self):
        source = InMemoryGateway()
        copied = source.append_transaction(_entry(), T0)
        copied = source.append_transaction(_entry(), T0)

        target = InMemoryGateway()
        target.insert_transaction(copied)

        assert target.transactions() == [copied]
        assert target.append_transaction(_entry(), T0).sequence == copied.sequence + 1

    def test_levels_sorted(self):
        gateway = InMemoryGateway()
        gateway.put_level(_level("1", location_id="W2"), 0)
        gateway.put_level(_level("1", location_id="W1"), 0)
        gateway.put_level(_level("1", product_id="P0", location_id="W1"), 0)

        assert [lvl.location_id for lvl in gateway.levels_for_product("P1")] == ["W1", "W2"]
        assert [lvl.product_id for lvl in gateway.levels_for_location("W1")] == ["P0", "P1"]
        assert [lvl.key for lvl in gateway.all_levels()] == [("P0", "W1"), ("P1", "W1"), ("P1", "W2")]
