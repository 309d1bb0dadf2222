"""
Module: stock_ledger.models.inventory_count
Responsibility: ORM persistence for inventory count sessions and their lines.
Architecture position: Ledger > Models.

Invariants enforced:
    - One line per (count_id, product_id) (UNIQUE constraint).
    - Lines of a completed count are frozen: ORM listeners in
      db/immutability.py reject UPDATE/DELETE once the parent is completed.
    - Status strings mirror CountStatus / CountItemStatus values.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import Base, UUIDString
from stock_ledger.domain.counts import (
    CountItemStatus,
    CountStatus,
    CountType,
    InventoryCount,
    InventoryCountItem,
    ReconcileAction,
)


class InventoryCountModel(Base):
    """
    ORM model for a count session header.

    Maps to: stock_ledger.domain.counts.InventoryCount (frozen dataclass).
    """

    __tablename__ = "inventory_counts"

    __table_args__ = (
        Index("idx_inventory_count_status", "status"),
        Index("idx_inventory_count_location", "location_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    count_type: Mapped[str] = mapped_column(String(20), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    total_products: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    counted_products: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_variances: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_variance_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> InventoryCount:
        return InventoryCount(
            id=self.id,
            name=self.name,
            count_type=CountType(self.count_type),
            location_id=self.location_id,
            status=CountStatus(self.status),
            created_by=self.created_by,
            notes=self.notes,
            total_products=self.total_products,
            counted_products=self.counted_products,
            total_variances=self.total_variances,
            total_variance_value=self.total_variance_value,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
        )

    def apply_dto(self, dto: InventoryCount) -> None:
        """Copy mutable header fields from ``dto`` onto this row."""
        self.name = dto.name
        self.status = dto.status.value
        self.notes = dto.notes
        self.total_products = dto.total_products
        self.counted_products = dto.counted_products
        self.total_variances = dto.total_variances
        self.total_variance_value = dto.total_variance_value
        self.started_at = dto.started_at
        self.completed_at = dto.completed_at
        self.cancelled_at = dto.cancelled_at

    @classmethod
    def from_dto(cls, dto: InventoryCount) -> "InventoryCountModel":
        model = cls(
            id=dto.id,
            count_type=dto.count_type.value,
            location_id=dto.location_id,
            created_by=dto.created_by,
            created_at=dto.created_at,
        )
        model.apply_dto(dto)
        return model

    def __repr__(self) -> str:
        return f"<InventoryCountModel {self.id} {self.name!r} status={self.status}>"


class InventoryCountItemModel(Base):
    """
    ORM model for one count line.

    Maps to: stock_ledger.domain.counts.InventoryCountItem (frozen dataclass).
    """

    __tablename__ = "inventory_count_items"

    __table_args__ = (
        UniqueConstraint("count_id", "product_id", name="uq_count_item_product"),
        Index("idx_count_item_count", "count_id"),
    )

    count_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_counts.id"),
        nullable=False,
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    system_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    physical_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolved_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    counted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> InventoryCountItem:
        return InventoryCountItem(
            count_id=self.count_id,
            product_id=self.product_id,
            location_id=self.location_id,
            system_quantity=self.system_quantity,
            unit_cost=self.unit_cost,
            physical_quantity=self.physical_quantity,
            status=CountItemStatus(self.status),
            resolution=ReconcileAction(self.resolution) if self.resolution else None,
            resolved_quantity=self.resolved_quantity,
            notes=self.notes,
            counted_at=self.counted_at,
        )

    def apply_dto(self, dto: InventoryCountItem) -> None:
        """Copy counting results from ``dto`` onto this row."""
        self.physical_quantity = dto.physical_quantity
        self.status = dto.status.value
        self.resolution = dto.resolution.value if dto.resolution else None
        self.resolved_quantity = dto.resolved_quantity
        self.notes = dto.notes
        self.counted_at = dto.counted_at

    @classmethod
    def from_dto(cls, dto: InventoryCountItem) -> "InventoryCountItemModel":
        model = cls(
            count_id=dto.count_id,
            product_id=dto.product_id,
            location_id=dto.location_id,
            system_quantity=dto.system_quantity,
            unit_cost=dto.unit_cost,
        )
        model.apply_dto(dto)
        return model

    def __repr__(self) -> str:
        return (
            f"<InventoryCountItemModel count={self.count_id} {self.product_id} "
            f"sys={self.system_quantity} phys={self.physical_quantity}>"
        )
