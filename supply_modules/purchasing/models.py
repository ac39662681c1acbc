"""
Purchasing Domain Models.

The nouns of procurement: requisitions, purchase orders, receptions, and
the inputs/results of their lifecycle operations.  Money is an integer in
minor currency units; quantities are floats.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class PurchaseOrderStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    CONFIRMED = "CONFIRMED"
    PARTIAL = "PARTIAL"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class RequisitionStatus(str, Enum):
    """Requisition lifecycle states."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ORDERED = "ORDERED"  # converted to purchase orders
    CLOSED = "CLOSED"


class SendChannel(str, Enum):
    EMAIL = "EMAIL"
    MANUAL = "MANUAL"


class LateImpact(str, Enum):
    """Impact of a late order: BLOCKING when critically late on a critical material."""
    BLOCKING = "BLOCKING"
    MAJOR = "MAJOR"
    MINOR = "MINOR"


# -----------------------------------------------------------------------------
# Inputs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderLineInput:
    material_id: UUID
    quantity: float
    unit_price: int = 0


@dataclass(frozen=True)
class SendProof:
    """
    Evidence that an order was transmitted.

    EMAIL uses ``recipient_email`` (falls back to the supplier address);
    MANUAL requires ``note``.  ``url`` may point at a scan or screenshot.
    """
    recipient_email: str | None = None
    note: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class ReceiptLineInput:
    line_id: UUID
    quantity: float
    lot_number: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class RequisitionLineInput:
    material_id: UUID
    quantity: float
    supplier_id: UUID | None = None


# -----------------------------------------------------------------------------
# Read DTOs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PurchaseOrderLine:
    id: UUID
    line_number: int
    material_id: UUID
    quantity: float
    unit_price: int
    quantity_received: float = 0.0

    @property
    def line_total(self) -> int:
        return round(self.quantity * self.unit_price)

    @property
    def remaining(self) -> float:
        return max(self.quantity - self.quantity_received, 0.0)


@dataclass(frozen=True)
class PurchaseOrder:
    id: UUID
    reference: str
    supplier_id: UUID
    status: PurchaseOrderStatus
    version: int
    total_amount: int
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)
    requisition_id: UUID | None = None
    expected_delivery: date | None = None
    notes: str | None = None
    send_channel: SendChannel | None = None
    sent_to_email: str | None = None
    sent_message_id: str | None = None
    sent_at: datetime | None = None
    sent_by_id: UUID | None = None
    confirmed_at: datetime | None = None
    confirmed_by_id: UUID | None = None
    received_at: datetime | None = None
    received_by_id: UUID | None = None
    cancelled_at: datetime | None = None
    cancelled_by_id: UUID | None = None
    cancellation_reason: str | None = None
    lock_holder_id: UUID | None = None
    lock_expires_at: datetime | None = None

    @property
    def total_received(self) -> float:
        return sum(line.quantity_received for line in self.lines)


@dataclass(frozen=True)
class RequisitionLine:
    id: UUID
    material_id: UUID
    quantity: float
    supplier_id: UUID | None = None


@dataclass(frozen=True)
class Requisition:
    id: UUID
    reference: str
    status: RequisitionStatus
    lines: tuple[RequisitionLine, ...] = field(default_factory=tuple)
    notes: str | None = None
    rejection_reason: str | None = None


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a lifecycle transition.

    ``replayed`` is True when an idempotency key matched an earlier call:
    nothing was executed and ``order`` is the current state.
    """
    order: PurchaseOrder
    action: str
    status_before: PurchaseOrderStatus | None
    status_after: PurchaseOrderStatus
    audit_seq: int | None = None
    replayed: bool = False
    message_id: str | None = None
    delivery_failed: bool = False


@dataclass(frozen=True)
class ReceiveResult:
    order: PurchaseOrder
    status_before: PurchaseOrderStatus
    status_after: PurchaseOrderStatus
    reception_id: UUID
    reception_reference: str
    movements_created: int
    lots_created: tuple[str, ...] = field(default_factory=tuple)
    over_received: bool = False


@dataclass(frozen=True)
class AdvisoryLockResult:
    """``acquired=False`` carries the current holder and expiry."""
    acquired: bool
    holder_id: UUID | None
    acquired_at: datetime | None
    expires_at: datetime | None


@dataclass(frozen=True)
class LatePurchaseOrder:
    order_id: UUID
    reference: str
    supplier_id: UUID
    supplier_name: str
    status: PurchaseOrderStatus
    expected_delivery: date
    days_late: int
    is_critical: bool
    has_critical_material: bool
    impact: LateImpact


@dataclass(frozen=True)
class LateOrderStats:
    total_active: int = 0
    total_late: int = 0
    critical_late: int = 0

    @property
    def late_percentage(self) -> int:
        if self.total_active == 0:
            return 0
        return round(self.total_late / self.total_active * 100)
