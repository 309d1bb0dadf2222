"""
Inventory Count Domain Models (``stock_ledger.domain.counts``).

Responsibility
--------------
Frozen value objects for count sessions and their lines, the variance
classification policy, and the read-side summaries (variance report,
progress) produced by ``InventoryCountEngine``.

Invariants
----------
- ``variance == physical_quantity - system_quantity`` whenever a physical
  quantity has been recorded; ``None`` before that.
- ``variance_value == variance * unit_cost``.
- A line's *target* quantity is what finalisation will adjust stock to:
  the reconciled quantity for ``verified`` lines, the physical quantity for
  ``counted`` lines.

Variance severity is policy, not law: ``VariancePolicy`` carries the match
tolerance and the critical threshold and is supplied through
``LedgerConfig``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_ledger.domain.values import ZERO


class CountStatus(str, Enum):
    """Lifecycle status of a count session."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CountType(str, Enum):
    """Full counts cover every stocked product at the location."""

    FULL = "full"
    PARTIAL = "partial"


class CountItemStatus(str, Enum):
    """Progress of one count line."""

    PENDING = "pending"
    COUNTED = "counted"
    VERIFIED = "verified"


class ReconcileAction(str, Enum):
    """How a supervisor resolved a line's variance."""

    ACCEPT_COUNT = "accept_count"
    KEEP_SYSTEM = "keep_system"
    MANUAL_ADJUST = "manual_adjust"


class VarianceSeverity(str, Enum):
    """Classification of a single line's variance."""

    MATCH = "match"
    SHORTAGE = "shortage"
    OVERAGE = "overage"


@dataclass(frozen=True)
class VariancePolicy:
    """
    Variance classification settings.

    ``match_tolerance`` is an absolute quantity: a variance whose magnitude
    does not exceed it counts as a match (useful for weighable goods).
    ``critical_value_threshold`` is the default unresolved-value limit above
    which a count is flagged critical; ``None`` disables the flag unless the
    caller supplies a threshold.
    """
    match_tolerance: Decimal = ZERO
    critical_value_threshold: Decimal | None = None

    def __post_init__(self):
        if self.match_tolerance < 0:
            raise ValueError("match_tolerance cannot be negative")
        if self.critical_value_threshold is not None and self.critical_value_threshold < 0:
            raise ValueError("critical_value_threshold cannot be negative")

    def classify(self, variance: Decimal) -> VarianceSeverity:
        if abs(variance) <= self.match_tolerance:
            return VarianceSeverity.MATCH
        if variance < 0:
            return VarianceSeverity.SHORTAGE
        return VarianceSeverity.OVERAGE

    def is_critical(
        self,
        unresolved_value: Decimal,
        threshold: Decimal | None = None,
    ) -> bool:
        limit = threshold if threshold is not None else self.critical_value_threshold
        if limit is None:
            return False
        return unresolved_value > limit


@dataclass(frozen=True)
class InventoryCountItem:
    """
    One line of a count sheet.

    Contract: Immutable snapshot; the engine stores a replaced copy on every
    change and refuses changes once the parent count is terminal.
    """
    count_id: UUID
    product_id: str
    location_id: str
    system_quantity: Decimal
    unit_cost: Decimal = ZERO
    physical_quantity: Decimal | None = None
    status: CountItemStatus = CountItemStatus.PENDING
    resolution: ReconcileAction | None = None
    resolved_quantity: Decimal | None = None
    notes: str | None = None
    counted_at: datetime | None = None

    @property
    def variance(self) -> Decimal | None:
        if self.physical_quantity is None:
            return None
        return self.physical_quantity - self.system_quantity

    @property
    def variance_value(self) -> Decimal | None:
        variance = self.variance
        if variance is None:
            return None
        return variance * self.unit_cost

    @property
    def target_quantity(self) -> Decimal | None:
        if self.status == CountItemStatus.VERIFIED:
            return self.resolved_quantity
        return self.physical_quantity

    @property
    def adjustment_delta(self) -> Decimal:
        """Quantity change finalisation will apply for this line."""
        target = self.target_quantity
        if target is None:
            return ZERO
        return target - self.system_quantity

    @property
    def is_recorded(self) -> bool:
        return self.status != CountItemStatus.PENDING

    def record(self, quantity: Decimal, counted_at: datetime, notes: str | None = None) -> "InventoryCountItem":
        """Return the line with a new physical quantity (last write wins)."""
        return replace(
            self,
            physical_quantity=quantity,
            status=CountItemStatus.COUNTED,
            resolution=None,
            resolved_quantity=None,
            counted_at=counted_at,
            notes=notes if notes is not None else self.notes,
        )

    def discard(self) -> "InventoryCountItem":
        """Return the line with all counting results removed."""
        return replace(
            self,
            physical_quantity=None,
            status=CountItemStatus.PENDING,
            resolution=None,
            resolved_quantity=None,
            counted_at=None,
        )


@dataclass(frozen=True)
class InventoryCount:
    """
    A count session header.

    ``total_variances`` is the number of lines whose finalised quantity
    differed from the snapshot; ``total_variance_value`` is their net value.
    """
    id: UUID
    name: str
    count_type: CountType
    location_id: str
    status: CountStatus = CountStatus.DRAFT
    created_by: str | None = None
    notes: str | None = None
    total_products: int = 0
    counted_products: int = 0
    total_variances: int = 0
    total_variance_value: Decimal = ZERO
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def reference(self) -> str:
        """Ledger reference used on every adjustment this count emits."""
        return str(self.id)

    @property
    def is_terminal(self) -> bool:
        return self.status in (CountStatus.COMPLETED, CountStatus.CANCELLED)


@dataclass(frozen=True)
class VarianceLine:
    """Classified variance of one counted line."""
    product_id: str
    system_quantity: Decimal
    physical_quantity: Decimal
    variance: Decimal
    variance_value: Decimal
    severity: VarianceSeverity
    resolved: bool


@dataclass(frozen=True)
class VarianceReport:
    """
    Variance summary for a count.

    ``unresolved_variance_value`` sums the absolute value of non-matching
    lines that are counted but not yet verified, so shortages and overages
    do not cancel out.
    """
    count_id: UUID
    lines: tuple[VarianceLine, ...] = field(default_factory=tuple)
    match_count: int = 0
    shortage_count: int = 0
    overage_count: int = 0
    net_variance_value: Decimal = ZERO
    unresolved_variance_value: Decimal = ZERO
    critical: bool = False


@dataclass(frozen=True)
class CountProgress:
    """Completion and accuracy metrics for a count."""
    count_id: UUID
    total_products: int
    counted_products: int
    verified_products: int
    pending_products: int
    completion_percent: Decimal
    accuracy_percent: Decimal
