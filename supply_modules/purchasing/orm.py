"""
SQLAlchemy ORM persistence models for the Purchasing module.

Responsibility
--------------
Database-backed persistence for requisitions, purchase orders, their
idempotency keys, and the receptions that bring goods into stock.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``PurchaseOrderLifecycle`` and
``RequisitionService``.  Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* Money (``unit_price``, ``total_amount``) is an integer in minor units.
* Purchase orders are never hard-deleted; cancellation is a status.
* ``PurchaseOrderModel.version`` is only ever incremented by the lifecycle
  service's conditional UPDATE; advisory-lock fields never touch it.
* ``(order_id, action, idempotency_key)`` is unique: a retried transition
  finds its first execution instead of running twice.
* References (``BC-``, ``REC-``, ``DA-``) are unique.

Audit relevance
---------------
Every lifecycle stamp (sent/confirmed/received/cancelled at/by) is kept on
the order itself in addition to the hash-chained audit log.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_kernel.db.base import TrackedBase
from supply_modules.catalog.orm import MaterialModel, SupplierModel
from supply_modules.purchasing.models import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    Requisition,
    RequisitionLine,
    RequisitionStatus,
    SendChannel,
)

# ---------------------------------------------------------------------------
# RequisitionModel
# ---------------------------------------------------------------------------


class RequisitionModel(TrackedBase):
    """
    An internal request to procure materials.

    Guarantees:
        - ``reference`` is unique (``DA-{year}-{nnnnn}``).
        - ``status`` follows REQUISITION_WORKFLOW.
    """

    __tablename__ = "purchasing_requisitions"

    __table_args__ = (
        UniqueConstraint("reference", name="uq_requisition_reference"),
        Index("idx_requisition_status", "status"),
    )

    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RequisitionStatus.DRAFT.value
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None]
    submitted_by_id: Mapped[UUID | None]
    approved_at: Mapped[datetime | None]
    approved_by_id: Mapped[UUID | None]
    rejected_at: Mapped[datetime | None]
    rejected_by_id: Mapped[UUID | None]
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ordered_at: Mapped[datetime | None]
    closed_at: Mapped[datetime | None]

    lines: Mapped[list["RequisitionLineModel"]] = relationship(
        "RequisitionLineModel",
        back_populates="requisition",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self) -> Requisition:
        return Requisition(
            id=self.id,
            reference=self.reference,
            status=RequisitionStatus(self.status),
            lines=tuple(line.to_dto() for line in self.lines),
            notes=self.notes,
            rejection_reason=self.rejection_reason,
        )

    def __repr__(self) -> str:
        return f"<RequisitionModel {self.reference} [{self.status}]>"


class RequisitionLineModel(TrackedBase):
    """One requested material; ``supplier_id`` overrides the primary supplier."""

    __tablename__ = "purchasing_requisition_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_requisition_line_quantity"),
        Index("idx_requisition_line_requisition", "requisition_id"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchasing_requisitions.id"), nullable=False
    )
    material_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_materials.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(nullable=False)
    supplier_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("catalog_suppliers.id"), nullable=True
    )

    requisition: Mapped[RequisitionModel] = relationship(back_populates="lines")
    material: Mapped[MaterialModel] = relationship(lazy="selectin")

    def to_dto(self) -> RequisitionLine:
        return RequisitionLine(
            id=self.id,
            material_id=self.material_id,
            quantity=self.quantity,
            supplier_id=self.supplier_id,
        )


# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order (``BC-{year}-{nnnnn}``) sent to one supplier.

    Guarantees:
        - ``reference`` is unique and never changes.
        - ``status`` follows PURCHASE_ORDER_WORKFLOW.
        - ``version`` starts at 1 and increases by exactly one per transition.
    """

    __tablename__ = "purchasing_orders"

    __table_args__ = (
        UniqueConstraint("reference", name="uq_purchase_order_reference"),
        CheckConstraint("version >= 1", name="ck_purchase_order_version"),
        Index("idx_purchase_order_status", "status"),
        Index("idx_purchase_order_supplier", "supplier_id"),
        Index("idx_purchase_order_requisition", "requisition_id"),
        Index("idx_purchase_order_expected", "status", "expected_delivery"),
    )

    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_suppliers.id"), nullable=False)
    requisition_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("purchasing_requisitions.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PurchaseOrderStatus.DRAFT.value
    )
    expected_delivery: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[int] = mapped_column(nullable=False, default=0)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    # Proof of send
    send_channel: Mapped[str | None] = mapped_column(String(10), nullable=True)
    sent_to_email: Mapped[str | None] = mapped_column(String(254), nullable=True)
    sent_message_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    sent_proof_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_proof_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    sent_at: Mapped[datetime | None]
    sent_by_id: Mapped[UUID | None]

    confirmed_at: Mapped[datetime | None]
    confirmed_by_id: Mapped[UUID | None]
    received_at: Mapped[datetime | None]
    received_by_id: Mapped[UUID | None]
    cancelled_at: Mapped[datetime | None]
    cancelled_by_id: Mapped[UUID | None]
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Advisory lock (UI edit contention only)
    lock_holder_id: Mapped[UUID | None]
    lock_acquired_at: Mapped[datetime | None]
    lock_expires_at: Mapped[datetime | None]

    supplier: Mapped[SupplierModel] = relationship(lazy="selectin")
    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    def to_dto(self) -> PurchaseOrder:
        return PurchaseOrder(
            id=self.id,
            reference=self.reference,
            supplier_id=self.supplier_id,
            status=PurchaseOrderStatus(self.status),
            version=self.version,
            total_amount=self.total_amount,
            lines=tuple(line.to_dto() for line in self.lines),
            requisition_id=self.requisition_id,
            expected_delivery=self.expected_delivery,
            notes=self.notes,
            send_channel=SendChannel(self.send_channel) if self.send_channel else None,
            sent_to_email=self.sent_to_email,
            sent_message_id=self.sent_message_id,
            sent_at=self.sent_at,
            sent_by_id=self.sent_by_id,
            confirmed_at=self.confirmed_at,
            confirmed_by_id=self.confirmed_by_id,
            received_at=self.received_at,
            received_by_id=self.received_by_id,
            cancelled_at=self.cancelled_at,
            cancelled_by_id=self.cancelled_by_id,
            cancellation_reason=self.cancellation_reason,
            lock_holder_id=self.lock_holder_id,
            lock_expires_at=self.lock_expires_at,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.reference} [{self.status}] v{self.version}>"


class PurchaseOrderLineModel(TrackedBase):
    """One ordered material with its running received quantity."""

    __tablename__ = "purchasing_order_lines"

    __table_args__ = (
        UniqueConstraint("order_id", "line_number", name="uq_order_line_number"),
        CheckConstraint("quantity > 0", name="ck_order_line_quantity"),
        CheckConstraint("unit_price >= 0", name="ck_order_line_unit_price"),
        CheckConstraint("quantity_received >= 0", name="ck_order_line_received"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("purchasing_orders.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(nullable=False)
    material_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_materials.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(nullable=False)
    unit_price: Mapped[int] = mapped_column(nullable=False, default=0)
    quantity_received: Mapped[float] = mapped_column(nullable=False, default=0.0)

    order: Mapped[PurchaseOrderModel] = relationship(back_populates="lines")
    material: Mapped[MaterialModel] = relationship(lazy="selectin")

    @property
    def is_fully_received(self) -> bool:
        return (self.quantity_received or 0.0) >= self.quantity

    def to_dto(self) -> PurchaseOrderLine:
        return PurchaseOrderLine(
            id=self.id,
            line_number=self.line_number,
            material_id=self.material_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            quantity_received=self.quantity_received or 0.0,
        )


class PurchaseOrderIdempotencyKeyModel(TrackedBase):
    """First execution of a keyed transition; replays return it."""

    __tablename__ = "purchasing_idempotency_keys"

    __table_args__ = (
        UniqueConstraint(
            "order_id", "action", "idempotency_key", name="uq_purchase_order_idempotency"
        ),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("purchasing_orders.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)
    status_before: Mapped[str] = mapped_column(String(20), nullable=False)
    status_after: Mapped[str] = mapped_column(String(20), nullable=False)
    audit_seq: Mapped[int | None]
    message_id: Mapped[str | None] = mapped_column(String(200), nullable=True)


# ---------------------------------------------------------------------------
# ReceptionModel
# ---------------------------------------------------------------------------


class ReceptionModel(TrackedBase):
    """
    A goods receipt against one purchase order (``REC-YYYYMMDD-NNN``).

    Reception lines reference the lots they created; the matching stock
    movements carry ``("Reception", reception.id)`` as their origin.
    """

    __tablename__ = "purchasing_receptions"

    __table_args__ = (
        UniqueConstraint("reference", name="uq_reception_reference"),
        Index("idx_reception_order", "purchase_order_id"),
    )

    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_suppliers.id"), nullable=False)
    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchasing_orders.id"), nullable=False
    )
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_note_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lines: Mapped[list["ReceptionLineModel"]] = relationship(
        "ReceptionLineModel",
        back_populates="reception",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ReceptionModel {self.reference}>"


class ReceptionLineModel(TrackedBase):
    __tablename__ = "purchasing_reception_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reception_line_quantity"),
        Index("idx_reception_line_reception", "reception_id"),
    )

    reception_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchasing_receptions.id"), nullable=False
    )
    order_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchasing_order_lines.id"), nullable=False
    )
    material_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_materials.id"), nullable=False)
    lot_id: Mapped[UUID] = mapped_column(ForeignKey("stock_lots.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(nullable=False)
    unit_price: Mapped[int] = mapped_column(nullable=False, default=0)

    reception: Mapped[ReceptionModel] = relationship(back_populates="lines")
