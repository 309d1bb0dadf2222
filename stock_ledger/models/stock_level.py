"""
Module: stock_ledger.models.stock_level
Responsibility: ORM persistence for current stock levels.
Architecture position: Ledger > Models.  Imports from db/base.py and domain
    value objects only.

Invariants enforced:
    - One row per (product_id, location_id) (UNIQUE constraint).
    - ``version`` increases by one per stored change; the SQL gateway updates
      with ``WHERE version = :expected`` so a stale writer updates zero rows.

Failure modes:
    - IntegrityError when two writers insert the first level for the same
      pair concurrently (surfaced as OptimisticLockError by the gateway).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import Base
from stock_ledger.domain.values import StockLevel


class StockLevelModel(Base):
    """
    ORM model for the current quantity of a product at a location.

    Maps to: stock_ledger.domain.values.StockLevel (frozen dataclass).
    """

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_stock_level_pair"),
        Index("idx_stock_level_product", "product_id"),
        Index("idx_stock_level_location", "location_id"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    min_stock_level: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> StockLevel:
        return StockLevel(
            product_id=self.product_id,
            location_id=self.location_id,
            quantity=self.quantity,
            min_stock_level=self.min_stock_level,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: StockLevel) -> "StockLevelModel":
        return cls(
            product_id=dto.product_id,
            location_id=dto.location_id,
            quantity=dto.quantity,
            min_stock_level=dto.min_stock_level,
            updated_at=dto.updated_at,
            version=dto.version,
        )

    def __repr__(self) -> str:
        return (
            f"<StockLevelModel {self.product_id}@{self.location_id} "
            f"qty={self.quantity} v{self.version}>"
        )
