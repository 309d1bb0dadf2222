"""Pure domain objects for the stock ledger: values, counts, workflow, clock."""

from stock_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from stock_ledger.domain.counts import (
    CountItemStatus,
    CountProgress,
    CountStatus,
    CountType,
    InventoryCount,
    InventoryCountItem,
    ReconcileAction,
    VarianceLine,
    VariancePolicy,
    VarianceReport,
    VarianceSeverity,
)
from stock_ledger.domain.directory import (
    InMemoryDirectory,
    ReferenceDirectory,
    StockLocation,
)
from stock_ledger.domain.values import (
    ZERO,
    LedgerEntry,
    StockKey,
    StockLevel,
    StockTransaction,
    TransactionType,
    as_quantity,
)
from stock_ledger.domain.workflows import COUNT_WORKFLOW

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CountItemStatus",
    "CountProgress",
    "CountStatus",
    "CountType",
    "InventoryCount",
    "InventoryCountItem",
    "ReconcileAction",
    "VarianceLine",
    "VariancePolicy",
    "VarianceReport",
    "VarianceSeverity",
    "InMemoryDirectory",
    "ReferenceDirectory",
    "StockLocation",
    "ZERO",
    "LedgerEntry",
    "StockKey",
    "StockLevel",
    "StockTransaction",
    "TransactionType",
    "as_quantity",
    "COUNT_WORKFLOW",
]
