"""
Stock Ledger

Multi-location stock ledger for a point-of-sale application:
- Current quantity per (product, location)
- Append-only transaction log with bracketed quantity snapshots
- Atomic, lock-ordered transfers
- Inventory counts reconciled into stock adjustments
"""

from stock_ledger.ledger import StockLedger

__version__ = "0.1.0"

__all__ = ["StockLedger"]
