"""Read-only reporting selectors."""

from stock_ledger.selectors.stock_selector import (
    ChainBreak,
    LedgerAuditReport,
    LedgerDrift,
    LocationStockSummary,
    LowStockItem,
    StockSelector,
    StockStatus,
)

__all__ = [
    "ChainBreak",
    "LedgerAuditReport",
    "LedgerDrift",
    "LocationStockSummary",
    "LowStockItem",
    "StockSelector",
    "StockStatus",
]
