"""
Module: supply_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditorService.validate_chain().
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    Every purchase-order transition, requisition transition, alert
    acknowledgment or postponement, movement correction and scan run
    produces an AuditEvent.  Postponement rate limiting counts these rows.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import Base, UTCDateTime, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Purchase order lifecycle
    PO_CREATED = "po_created"
    PO_SENT = "po_sent"
    PO_CONFIRMED = "po_confirmed"
    PO_PARTIALLY_RECEIVED = "po_partially_received"
    PO_RECEIVED = "po_received"
    PO_CANCELLED = "po_cancelled"

    # Requisition lifecycle
    REQUISITION_CREATED = "requisition_created"
    REQUISITION_SUBMITTED = "requisition_submitted"
    REQUISITION_APPROVED = "requisition_approved"
    REQUISITION_REJECTED = "requisition_rejected"
    REQUISITION_ORDERED = "requisition_ordered"
    REQUISITION_CLOSED = "requisition_closed"

    # Alerts
    ALERT_ACKNOWLEDGED = "alert_acknowledged"
    ALERT_POSTPONED = "alert_postponed"
    ALERT_SCAN_COMPLETED = "alert_scan_completed"

    # Ledger
    MOVEMENT_SOFT_DELETED = "movement_soft_deleted"

    # Suppliers
    SUPPLIER_GRADE_CHANGED = "supplier_grade_changed"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        Append-only, never updated or deleted.  Each row's hash includes
        the previous row's hash.

    Non-goals:
        Does NOT compute hashes at INSERT time; AuditorService does.
    """

    __tablename__ = "audit_events"
    __append_only__ = True

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_entity_action", "entity_type", "entity_id", "action", "occurred_at"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    # e.g. "PurchaseOrder", "Material", "Alert"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Null only for the genesis event
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
