"""ORM models for the stock ledger.  Importing this package registers every table."""

from stock_ledger.models.inventory_count import (
    InventoryCountItemModel,
    InventoryCountModel,
)
from stock_ledger.models.sequence import SequenceCounter
from stock_ledger.models.stock_level import StockLevelModel
from stock_ledger.models.stock_transaction import StockTransactionModel

__all__ = [
    "InventoryCountItemModel",
    "InventoryCountModel",
    "SequenceCounter",
    "StockLevelModel",
    "StockTransactionModel",
]
