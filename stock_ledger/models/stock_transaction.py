"""
Module: stock_ledger.models.stock_transaction
Responsibility: ORM persistence for ledger entries -- the single source of
    truth for how every stock level got where it is.
Architecture position: Ledger > Models.

Invariants enforced:
    - Append-only: ORM listeners in db/immutability.py reject UPDATE and
      DELETE on this table.
    - ``sequence`` is unique and allocated from a locked counter row, so
      creation order survives identical timestamps.
    - ``new_quantity = previous_quantity + quantity`` is checked by
      TransactionLedger before the row is ever built.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import Base
from stock_ledger.domain.values import StockTransaction, TransactionType


class StockTransactionModel(Base):
    """
    ORM model for one immutable stock movement.

    Maps to: stock_ledger.domain.values.StockTransaction (frozen dataclass).
    """

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("sequence", name="uq_stock_transaction_sequence"),
        Index("idx_stock_txn_product", "product_id", "sequence"),
        Index("idx_stock_txn_location", "location_id", "sequence"),
        Index("idx_stock_txn_reference", "reference"),
        Index("idx_stock_txn_created_at", "created_at"),
    )

    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    previous_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    new_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    related_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> StockTransaction:
        return StockTransaction(
            id=self.id,
            sequence=self.sequence,
            product_id=self.product_id,
            location_id=self.location_id,
            type=TransactionType(self.type),
            quantity=self.quantity,
            previous_quantity=self.previous_quantity,
            new_quantity=self.new_quantity,
            created_at=self.created_at,
            reason=self.reason,
            reference=self.reference,
            related_id=self.related_id,
            created_by=self.created_by,
        )

    @classmethod
    def from_dto(cls, dto: StockTransaction) -> "StockTransactionModel":
        return cls(
            id=dto.id,
            sequence=dto.sequence,
            product_id=dto.product_id,
            location_id=dto.location_id,
            type=dto.type.value,
            quantity=dto.quantity,
            previous_quantity=dto.previous_quantity,
            new_quantity=dto.new_quantity,
            reason=dto.reason,
            reference=dto.reference,
            related_id=dto.related_id,
            created_by=dto.created_by,
            created_at=dto.created_at,
        )

    def __repr__(self) -> str:
        return (
            f"<StockTransactionModel #{self.sequence} {self.type} "
            f"{self.product_id}@{self.location_id} {self.quantity:+}>"
        )
