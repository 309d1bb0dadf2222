"""Ledger services -- the imperative shell around the gateway."""

from stock_ledger.services.inventory_count_engine import InventoryCountEngine
from stock_ledger.services.locks import KeyedLockManager, retry_on_contention
from stock_ledger.services.stock_level_store import StockLevelStore
from stock_ledger.services.stock_mutation_service import StockMutationService
from stock_ledger.services.transaction_ledger import TransactionLedger

__all__ = [
    "InventoryCountEngine",
    "KeyedLockManager",
    "StockLevelStore",
    "StockMutationService",
    "TransactionLedger",
    "retry_on_contention",
]
