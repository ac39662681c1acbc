"""
Purchasing Module (``supply_modules.purchasing``).

Responsibility
--------------
Requisitions, purchase orders and goods receipt: the document side of
procurement.  ``PurchaseOrderLifecycle`` owns every order transition;
``RequisitionService`` owns requisition approval.

Architecture position
---------------------
**Modules layer** -- workflows, ORM models, DTOs and the service facades.
Receipts post IN movements through ``supply_modules.stock.StockLedgerEngine``
in the same transaction.

Invariants enforced
-------------------
* Status changes only through ``PURCHASE_ORDER_WORKFLOW`` /
  ``REQUISITION_WORKFLOW``.
* Optimistic versioning and idempotency keys on order transitions.
* Receipt is atomic: lines, lots, movements and status together.

Audit relevance
---------------
Every transition is recorded in the kernel audit chain with before/after
status and the acting user.
"""

from supply_modules.purchasing.models import (
    AdvisoryLockResult,
    LateImpact,
    LateOrderStats,
    LatePurchaseOrder,
    OrderLineInput,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    ReceiptLineInput,
    ReceiveResult,
    Requisition,
    RequisitionLine,
    RequisitionLineInput,
    RequisitionStatus,
    SendChannel,
    SendProof,
    TransitionResult,
)
from supply_modules.purchasing.notifier import (
    NullNotifier,
    OutboundLine,
    OutboundPurchaseOrder,
    PurchaseOrderNotifier,
)
from supply_modules.purchasing.requisitions import RequisitionService
from supply_modules.purchasing.service import PurchaseOrderLifecycle
from supply_modules.purchasing.workflows import PURCHASE_ORDER_WORKFLOW, REQUISITION_WORKFLOW

__all__ = [
    "AdvisoryLockResult",
    "LateImpact",
    "LateOrderStats",
    "LatePurchaseOrder",
    "NullNotifier",
    "OrderLineInput",
    "OutboundLine",
    "OutboundPurchaseOrder",
    "PURCHASE_ORDER_WORKFLOW",
    "PurchaseOrder",
    "PurchaseOrderLifecycle",
    "PurchaseOrderLine",
    "PurchaseOrderNotifier",
    "PurchaseOrderStatus",
    "REQUISITION_WORKFLOW",
    "ReceiptLineInput",
    "ReceiveResult",
    "Requisition",
    "RequisitionLine",
    "RequisitionLineInput",
    "RequisitionService",
    "RequisitionStatus",
    "SendChannel",
    "SendProof",
    "TransitionResult",
]
