"""
Outbound purchase-order notification.

``PurchaseOrderLifecycle.send()`` hands an ``OutboundPurchaseOrder`` to a
``PurchaseOrderNotifier`` and records the returned message id.  Transport
(SMTP, provider API, queue) lives behind the protocol; a failure is
reported by raising ``NotifierError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Protocol, runtime_checkable
from uuid import uuid4

from supply_kernel.logging_config import get_logger

logger = get_logger("modules.purchasing.notifier")


@dataclass(frozen=True)
class OutboundLine:
    material_code: str
    material_name: str
    unit: str
    quantity: float
    unit_price: int


@dataclass(frozen=True)
class OutboundPurchaseOrder:
    reference: str
    supplier_name: str
    recipient_email: str
    total_amount: int
    expected_delivery: date | None = None
    lines: tuple[OutboundLine, ...] = field(default_factory=tuple)


@runtime_checkable
class PurchaseOrderNotifier(Protocol):
    def dispatch(self, order: OutboundPurchaseOrder) -> str:
        """Transmit the order; return the provider message id or raise NotifierError."""
        ...


class NullNotifier:
    """Accepts every dispatch without transmitting; used until a transport is wired."""

    def dispatch(self, order: OutboundPurchaseOrder) -> str:
        message_id = f"MSG-{uuid4().hex[:16]}"
        logger.info(
            "purchase_order_dispatch_skipped",
            extra={
                "reference": order.reference,
                "recipient": order.recipient_email,
                "message_id": message_id,
            },
        )
        return message_id
