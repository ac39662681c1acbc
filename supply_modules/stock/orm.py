"""
SQLAlchemy ORM persistence models for the Stock module.

Responsibility
--------------
The append-only movement ledger and the lots it references.

Invariants enforced
-------------------
* ``StockMovementModel`` is append-only: the kernel immutability listener
  rejects DELETE and every UPDATE except setting the soft-delete stamp once.
* ``quantity`` is strictly positive (CHECK constraint); the sign comes from
  ``direction``.
* Current stock = SUM(IN) - SUM(OUT) over rows with ``is_deleted = false``.
  Nothing else is authoritative.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import TrackedBase
from supply_modules.stock.models import MovementDirection, MovementOrigin, StockMovementRecord

# ---------------------------------------------------------------------------
# LotModel
# ---------------------------------------------------------------------------


class LotModel(TrackedBase):
    """A received lot of one material."""

    __tablename__ = "stock_lots"

    __table_args__ = (
        UniqueConstraint("reception_id", "material_id", "lot_number", name="uq_lot_reception_number"),
        Index("idx_lot_material", "material_id"),
        Index("idx_lot_number", "lot_number"),
    )

    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    material_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_materials.id"), nullable=False)
    supplier_id: Mapped[UUID | None] = mapped_column(ForeignKey("catalog_suppliers.id"), nullable=True)
    reception_id: Mapped[UUID | None]
    quantity_initial: Mapped[float] = mapped_column(nullable=False)
    quantity_remaining: Mapped[float] = mapped_column(nullable=False)
    unit_cost: Mapped[int | None]
    received_on: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<LotModel {self.lot_number} remaining={self.quantity_remaining}>"


# ---------------------------------------------------------------------------
# StockMovementModel
# ---------------------------------------------------------------------------


class StockMovementModel(TrackedBase):
    """One signed entry of the stock ledger."""

    __tablename__ = "stock_movements"
    __append_only__ = True
    __soft_delete_flag__ = "is_deleted"
    __soft_delete_fields__ = ("deleted_at", "deleted_by_id", "deletion_reason")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
        CheckConstraint("direction IN ('IN', 'OUT')", name="ck_movement_direction"),
        Index("idx_movement_material", "material_id", "is_deleted"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
        Index("idx_movement_occurred", "occurred_at"),
    )

    material_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_materials.id"), nullable=False)
    direction: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity: Mapped[float] = mapped_column(nullable=False)
    origin: Mapped[str] = mapped_column(String(20), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    # Originating document, e.g. ("Reception", reception.id)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None]
    lot_id: Mapped[UUID | None] = mapped_column(ForeignKey("stock_lots.id"), nullable=True)
    unit_cost: Mapped[int | None]
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None]
    deleted_by_id: Mapped[UUID | None]
    deletion_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def to_dto(self) -> StockMovementRecord:
        return StockMovementRecord(
            id=self.id,
            material_id=self.material_id,
            direction=MovementDirection(self.direction),
            quantity=self.quantity,
            origin=MovementOrigin(self.origin),
            occurred_at=self.occurred_at,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            lot_id=self.lot_id,
            is_deleted=self.is_deleted,
        )

    def __repr__(self) -> str:
        return f"<StockMovementModel {self.direction} {self.quantity} material={self.material_id}>"
