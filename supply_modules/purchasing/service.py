"""
Purchase Order Lifecycle (``supply_modules.purchasing.service``).

Responsibility
--------------
Owns every purchase-order state change: creation (directly or from an
approved requisition), sending with proof, supplier confirmation, goods
receipt into the stock ledger, and cancellation.  Also grants cooperative
advisory locks for the editing UI and answers late-order queries.

Architecture position
---------------------
**Modules layer**.  ``PurchaseOrderLifecycle`` is the sole public entry
point for purchase-order mutations.  It composes the kernel
``AuditorService`` and ``SequenceService`` and the ``StockLedgerEngine``,
all sharing one session so ``receive()`` is a single atomic unit.

Invariants enforced
-------------------
* Transitions are looked up in ``PURCHASE_ORDER_WORKFLOW`` before any
  mutation.
* Optimistic concurrency: every transition takes ``expected_version``; the
  version is bumped by ``UPDATE ... WHERE version = :expected`` so a
  concurrent writer is detected even after the explicit check passed.
* Idempotency keys are resolved before any status check; a replay returns
  the first result and writes nothing.
* ``receive()``: lines, lots, movements, reception and status commit or
  roll back together.
* Advisory locks never gate transitions and never bump ``version``.

Failure modes
-------------
* ``NotFoundError`` -- unknown order, supplier or material.
* ``ValidationError`` family -- empty lines, bad quantities, missing proof
  of send, short cancellation reason, over-receipt under ``reject``.
* ``StateConflictError`` family -- wrong status, stale version, received
  quantities on cancel.
* ``AuthorizationError`` -- cancel without the administrative role.
* ``NotifierError`` is NOT propagated: the order is still SENT and the
  failure is recorded in the audit payload.

Audit relevance
---------------
Every transition writes an audit event with ``status_before`` and
``status_after`` in the same transaction as the change.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from supply_config import OverReceiptPolicy, SupplyPolicy, get_active_policy
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.domain.workflow import require_transition
from supply_kernel.exceptions import (
    AuthorizationError,
    InvalidQuantityError,
    NotFoundError,
    NotifierError,
    OverReceiptError,
    ProofOfSendMissingError,
    ReasonTooShortError,
    ReceivedQuantityConflictError,
    ValidationError,
    VersionConflictError,
)
from supply_kernel.logging_config import LogContext, get_logger
from supply_kernel.models.audit_event import AuditAction
from supply_kernel.services.auditor_service import AuditorService
from supply_kernel.services.sequence_service import SequenceService
from supply_modules.catalog.models import Criticality
from supply_modules.catalog.orm import MaterialModel, SupplierModel
from supply_modules.purchasing.models import (
    AdvisoryLockResult,
    LateImpact,
    LateOrderStats,
    LatePurchaseOrder,
    OrderLineInput,
    PurchaseOrder,
    PurchaseOrderStatus,
    ReceiptLineInput,
    ReceiveResult,
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
from supply_modules.purchasing.orm import (
    PurchaseOrderIdempotencyKeyModel,
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    ReceptionLineModel,
    ReceptionModel,
    RequisitionModel,
)
from supply_modules.purchasing.workflows import PURCHASE_ORDER_WORKFLOW, REQUISITION_WORKFLOW
from supply_modules.stock.ledger import StockLedgerEngine
from supply_modules.stock.models import MovementDirection, MovementOrigin
from supply_modules.stock.orm import LotModel

logger = get_logger("modules.purchasing.service")

_ENTITY = "PurchaseOrder"

OPEN_STATUSES = (
    PurchaseOrderStatus.SENT.value,
    PurchaseOrderStatus.CONFIRMED.value,
    PurchaseOrderStatus.PARTIAL.value,
)


class PurchaseOrderLifecycle:
    """
    State machine for purchase orders.

    Contract
    --------
    * Mutating methods return frozen DTOs (``PurchaseOrder``,
      ``TransitionResult``, ``ReceiveResult``); ORM rows never leak.
    * ``send`` and ``cancel`` accept an ``idempotency_key``; a repeated key
      returns the prior result with ``replayed=True``.

    Guarantees
    ----------
    * With ``auto_commit=True`` (default) each public mutating method
      commits on success and rolls back on any exception.
    * Kernel services (audit, sequences) and the ledger share this session
      and never commit on their own.
    * Clock and notifier are injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT authenticate actors; ``actor_id``/``actor_role`` are trusted.
    * Does NOT render documents (PDF) or transmit email itself.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SupplyPolicy | None = None,
        notifier: PurchaseOrderNotifier | None = None,
        ledger: StockLedgerEngine | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or get_active_policy()
        self._notifier = notifier or NullNotifier()
        self._ledger = ledger or StockLedgerEngine(session, self._clock, self._policy)
        self._auditor = AuditorService(session, self._clock)
        self._sequences = SequenceService(session)
        self._auto_commit = auto_commit

    def _commit(self) -> None:
        if self._auto_commit:
            self._session.commit()

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load(self, order_id: UUID) -> PurchaseOrderModel:
        order = self._session.get(PurchaseOrderModel, order_id)
        if order is None:
            raise NotFoundError(_ENTITY, order_id)
        return order

    def _check_version(self, order: PurchaseOrderModel, expected_version: int) -> None:
        if order.version != expected_version:
            logger.warning(
                "purchase_order_version_conflict",
                extra={
                    "reference": order.reference,
                    "expected_version": expected_version,
                    "actual_version": order.version,
                },
            )
            raise VersionConflictError(_ENTITY, order.id, expected_version, order.version)

    def _bump_version(self, order: PurchaseOrderModel, expected_version: int) -> None:
        """Conditional increment; zero rows updated means a concurrent writer won."""
        result = self._session.execute(
            update(PurchaseOrderModel)
            .where(
                PurchaseOrderModel.id == order.id,
                PurchaseOrderModel.version == expected_version,
            )
            .values(version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self._session.execute(
                select(PurchaseOrderModel.version).where(PurchaseOrderModel.id == order.id)
            ).scalar_one()
            logger.warning(
                "purchase_order_version_conflict",
                extra={
                    "reference": order.reference,
                    "expected_version": expected_version,
                    "actual_version": current,
                    "concurrent": True,
                },
            )
            raise VersionConflictError(_ENTITY, order.id, expected_version, current)
        set_committed_value(order, "version", expected_version + 1)

    def _replay(
        self,
        order: PurchaseOrderModel,
        action: str,
        idempotency_key: str | None,
    ) -> TransitionResult | None:
        if not idempotency_key:
            return None
        row = self._session.execute(
            select(PurchaseOrderIdempotencyKeyModel).where(
                PurchaseOrderIdempotencyKeyModel.order_id == order.id,
                PurchaseOrderIdempotencyKeyModel.action == action,
                PurchaseOrderIdempotencyKeyModel.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()
        if row is None:
            return None
        logger.info(
            "purchase_order_transition_replayed",
            extra={
                "reference": order.reference,
                "action": action,
                "idempotency_key": idempotency_key,
            },
        )
        return TransitionResult(
            order=order.to_dto(),
            action=action,
            status_before=PurchaseOrderStatus(row.status_before),
            status_after=PurchaseOrderStatus(row.status_after),
            audit_seq=row.audit_seq,
            replayed=True,
            message_id=row.message_id,
        )

    def _remember(
        self,
        order: PurchaseOrderModel,
        action: str,
        idempotency_key: str | None,
        status_before: PurchaseOrderStatus,
        status_after: PurchaseOrderStatus,
        audit_seq: int,
        actor_id: UUID,
        message_id: str | None = None,
    ) -> None:
        if not idempotency_key:
            return
        self._session.add(
            PurchaseOrderIdempotencyKeyModel(
                order_id=order.id,
                action=action,
                idempotency_key=idempotency_key,
                status_before=status_before.value,
                status_after=status_after.value,
                audit_seq=audit_seq,
                message_id=message_id,
                created_by_id=actor_id,
            )
        )
        self._session.flush()

    def _next_reference(self) -> str:
        year = self._clock.today().year
        seq = self._sequences.next_value(
            SequenceService.scoped(SequenceService.PURCHASE_ORDER, year)
        )
        return f"{self._policy.purchasing.order_reference_prefix}-{year}-{seq:05d}"

    # =========================================================================
    # Creation
    # =========================================================================

    def _create(
        self,
        supplier_id: UUID,
        lines: Sequence[OrderLineInput],
        actor_id: UUID,
        expected_delivery: date | None = None,
        requisition_id: UUID | None = None,
        notes: str | None = None,
    ) -> PurchaseOrderModel:
        if not lines:
            raise ValidationError("lines", "at least one line is required")

        supplier = self._session.get(SupplierModel, supplier_id)
        if supplier is None:
            raise NotFoundError("Supplier", supplier_id)
        if not supplier.is_active:
            raise ValidationError("supplier_id", f"supplier {supplier.code} is inactive")

        material_ids = {line.material_id for line in lines}
        found = set(
            self._session.execute(
                select(MaterialModel.id).where(MaterialModel.id.in_(material_ids))
            ).scalars()
        )
        for i, line in enumerate(lines):
            if line.material_id not in found:
                raise NotFoundError("Material", line.material_id)
            if line.quantity is None or line.quantity <= 0:
                raise InvalidQuantityError(f"lines[{i}].quantity", line.quantity)
            if line.unit_price is None or line.unit_price < 0:
                raise ValidationError(f"lines[{i}].unit_price", "must be >= 0")

        order = PurchaseOrderModel(
            reference=self._next_reference(),
            supplier_id=supplier.id,
            requisition_id=requisition_id,
            status=PurchaseOrderStatus.DRAFT.value,
            expected_delivery=expected_delivery,
            notes=notes,
            total_amount=sum(round(line.quantity * line.unit_price) for line in lines),
            version=1,
            created_by_id=actor_id,
            lines=[
                PurchaseOrderLineModel(
                    line_number=i + 1,
                    material_id=line.material_id,
                    quantity=float(line.quantity),
                    unit_price=int(line.unit_price),
                    quantity_received=0.0,
                    created_by_id=actor_id,
                )
                for i, line in enumerate(lines)
            ],
        )
        self._session.add(order)
        self._session.flush()

        self._auditor.record_transition(
            entity_type=_ENTITY,
            entity_id=order.id,
            action=AuditAction.PO_CREATED,
            actor_id=actor_id,
            status_before=None,
            status_after=PurchaseOrderStatus.DRAFT.value,
            reference=order.reference,
            supplier_id=supplier.id,
            total_amount=order.total_amount,
            line_count=len(lines),
            requisition_id=requisition_id,
        )
        logger.info(
            "purchase_order_created",
            extra={
                "order_id": str(order.id),
                "reference": order.reference,
                "supplier_id": str(supplier.id),
                "line_count": len(lines),
                "total_amount": order.total_amount,
            },
        )
        return order

    def create(
        self,
        supplier_id: UUID,
        lines: Sequence[OrderLineInput],
        actor_id: UUID,
        expected_delivery: date | None = None,
        requisition_id: UUID | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """Create a DRAFT order with the next ``BC-{year}-{nnnnn}`` reference."""
        try:
            order = self._create(
                supplier_id, lines, actor_id, expected_delivery, requisition_id, notes
            )
            self._commit()
            return order.to_dto()
        except Exception:
            self._rollback()
            raise

    def create_from_requisition(
        self,
        requisition_id: UUID,
        actor_id: UUID,
        expected_delivery: date | None = None,
    ) -> list[PurchaseOrder]:
        """
        One DRAFT order per supplier from an APPROVED requisition.

        Each line goes to its supplier override, else to the material's
        primary supplier.  The requisition moves to ORDERED.
        """
        try:
            requisition = self._session.get(RequisitionModel, requisition_id)
            if requisition is None:
                raise NotFoundError("Requisition", requisition_id)
            require_transition(
                REQUISITION_WORKFLOW, "Requisition", requisition.id, requisition.status, "order"
            )

            grouped: dict[UUID, list[OrderLineInput]] = {}
            for i, line in enumerate(requisition.lines):
                supplier_id = line.supplier_id or line.material.primary_supplier_id
                if supplier_id is None:
                    raise ValidationError(
                        f"lines[{i}].supplier_id",
                        f"material {line.material.code} has no supplier",
                    )
                grouped.setdefault(supplier_id, []).append(
                    OrderLineInput(material_id=line.material_id, quantity=line.quantity)
                )

            orders = [
                self._create(
                    supplier_id,
                    lines,
                    actor_id,
                    expected_delivery=expected_delivery,
                    requisition_id=requisition.id,
                )
                for supplier_id, lines in grouped.items()
            ]

            requisition.status = RequisitionStatus.ORDERED.value
            requisition.ordered_at = self._clock.now()
            requisition.updated_by_id = actor_id
            self._session.flush()
            self._auditor.record_transition(
                entity_type="Requisition",
                entity_id=requisition.id,
                action=AuditAction.REQUISITION_ORDERED,
                actor_id=actor_id,
                status_before=RequisitionStatus.APPROVED.value,
                status_after=RequisitionStatus.ORDERED.value,
                reference=requisition.reference,
                orders=[o.reference for o in orders],
            )
            self._commit()
            logger.info(
                "requisition_converted",
                extra={
                    "requisition_id": str(requisition_id),
                    "order_count": len(orders),
                },
            )
            return [o.to_dto() for o in orders]
        except Exception:
            self._rollback()
            raise

    # =========================================================================
    # Send / confirm
    # =========================================================================

    def _outbound(self, order: PurchaseOrderModel, recipient: str) -> OutboundPurchaseOrder:
        return OutboundPurchaseOrder(
            reference=order.reference,
            supplier_name=order.supplier.name,
            recipient_email=recipient,
            total_amount=order.total_amount,
            expected_delivery=order.expected_delivery,
            lines=tuple(
                OutboundLine(
                    material_code=line.material.code,
                    material_name=line.material.name,
                    unit=line.material.unit,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in order.lines
            ),
        )

    def send(
        self,
        order_id: UUID,
        channel: SendChannel,
        proof: SendProof | None,
        actor_id: UUID,
        expected_version: int,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """
        DRAFT -> SENT with proof of send.

        EMAIL dispatches through the notifier; a ``NotifierError`` leaves
        the order SENT with no message id and ``delivery_failed`` set.
        MANUAL requires a proof note of the configured minimum length.
        """
        purchasing = self._policy.purchasing
        try:
            with LogContext.bind(order_id=str(order_id), actor_id=str(actor_id)):
                order = self._load(order_id)
                replayed = self._replay(order, "send", idempotency_key)
                if replayed is not None:
                    return replayed

                channel = SendChannel(channel)
                proof = proof or SendProof()
                require_transition(PURCHASE_ORDER_WORKFLOW, _ENTITY, order.id, order.status, "send")

                note = (proof.note or "").strip() or None
                recipient = None
                if channel == SendChannel.EMAIL:
                    recipient = proof.recipient_email or order.supplier.email
                    if not recipient:
                        raise ProofOfSendMissingError(
                            channel.value, "no recipient address and the supplier has no email"
                        )
                elif len(note or "") < purchasing.manual_proof_min_length:
                    raise ProofOfSendMissingError(
                        channel.value,
                        f"proof note must be at least {purchasing.manual_proof_min_length} characters",
                    )

                self._check_version(order, expected_version)
                self._bump_version(order, expected_version)

                now = self._clock.now()
                delivery_failed = False
                failure_reason = None
                if channel == SendChannel.EMAIL:
                    try:
                        message_id = self._notifier.dispatch(self._outbound(order, recipient))
                    except NotifierError as exc:
                        message_id = None
                        delivery_failed = True
                        failure_reason = str(exc)
                        logger.warning(
                            "purchase_order_dispatch_failed",
                            extra={
                                "reference": order.reference,
                                "recipient": recipient,
                                "reason": failure_reason,
                            },
                        )
                else:
                    message_id = f"MANUAL-{int(now.timestamp() * 1000)}"

                order.status = PurchaseOrderStatus.SENT.value
                order.send_channel = channel.value
                order.sent_to_email = recipient
                order.sent_message_id = message_id
                order.sent_proof_note = note
                order.sent_proof_url = proof.url
                order.sent_at = now
                order.sent_by_id = actor_id
                order.updated_by_id = actor_id
                self._session.flush()

                event = self._auditor.record_transition(
                    entity_type=_ENTITY,
                    entity_id=order.id,
                    action=AuditAction.PO_SENT,
                    actor_id=actor_id,
                    status_before=PurchaseOrderStatus.DRAFT.value,
                    status_after=PurchaseOrderStatus.SENT.value,
                    reference=order.reference,
                    supplier_id=order.supplier_id,
                    channel=channel.value,
                    recipient=recipient,
                    message_id=message_id,
                    proof_note=note[:200] if note else None,
                    proof_url=proof.url,
                    idempotency_key=idempotency_key,
                    delivery_failed=delivery_failed,
                    failure_reason=failure_reason,
                    version=order.version,
                )
                self._remember(
                    order,
                    "send",
                    idempotency_key,
                    PurchaseOrderStatus.DRAFT,
                    PurchaseOrderStatus.SENT,
                    event.seq,
                    actor_id,
                    message_id,
                )
                self._commit()

                logger.info(
                    "purchase_order_sent",
                    extra={
                        "reference": order.reference,
                        "channel": channel.value,
                        "message_id": message_id,
                        "delivery_failed": delivery_failed,
                    },
                )
                return TransitionResult(
                    order=order.to_dto(),
                    action="send",
                    status_before=PurchaseOrderStatus.DRAFT,
                    status_after=PurchaseOrderStatus.SENT,
                    audit_seq=event.seq,
                    message_id=message_id,
                    delivery_failed=delivery_failed,
                )
        except Exception:
            self._rollback()
            raise

    def confirm(self, order_id: UUID, actor_id: UUID, expected_version: int) -> TransitionResult:
        """SENT -> CONFIRMED (supplier acknowledged the order)."""
        try:
            with LogContext.bind(order_id=str(order_id), actor_id=str(actor_id)):
                order = self._load(order_id)
                require_transition(
                    PURCHASE_ORDER_WORKFLOW, _ENTITY, order.id, order.status, "confirm"
                )
                self._check_version(order, expected_version)
                self._bump_version(order, expected_version)

                order.status = PurchaseOrderStatus.CONFIRMED.value
                order.confirmed_at = self._clock.now()
                order.confirmed_by_id = actor_id
                order.updated_by_id = actor_id
                self._session.flush()

                event = self._auditor.record_transition(
                    entity_type=_ENTITY,
                    entity_id=order.id,
                    action=AuditAction.PO_CONFIRMED,
                    actor_id=actor_id,
                    status_before=PurchaseOrderStatus.SENT.value,
                    status_after=PurchaseOrderStatus.CONFIRMED.value,
                    reference=order.reference,
                    version=order.version,
                )
                self._commit()
                logger.info("purchase_order_confirmed", extra={"reference": order.reference})
                return TransitionResult(
                    order=order.to_dto(),
                    action="confirm",
                    status_before=PurchaseOrderStatus.SENT,
                    status_after=PurchaseOrderStatus.CONFIRMED,
                    audit_seq=event.seq,
                )
        except Exception:
            self._rollback()
            raise

    # =========================================================================
    # Receive
    # =========================================================================

    @staticmethod
    def _generated_lot_number(receipt_date: date, material_code: str, used: set[str]) -> str:
        base = f"L{receipt_date:%Y%m%d}-{material_code}"
        candidate, n = base, 1
        while candidate in used:
            n += 1
            candidate = f"{base}-{n}"
        return candidate

    def receive(
        self,
        order_id: UUID,
        lines: Sequence[ReceiptLineInput],
        actor_id: UUID,
        expected_version: int,
        receipt_date: date | None = None,
        delivery_note_number: str | None = None,
    ) -> ReceiveResult:
        """
        Record a (partial) delivery in one atomic unit.

        Postconditions:
            Each line's ``quantity_received`` grew by its receipt; one lot and
            one IN movement exist per line with quantity > 0; status is
            RECEIVED only when every line is fully received, else PARTIAL.
        """
        purchasing = self._policy.purchasing
        try:
            with LogContext.bind(order_id=str(order_id), actor_id=str(actor_id)):
                order = self._load(order_id)
                status_before = PurchaseOrderStatus(order.status)
                if not lines:
                    raise ValidationError("lines", "at least one receipt line is required")
                require_transition(
                    PURCHASE_ORDER_WORKFLOW, _ENTITY, order.id, order.status, "receive"
                )

                by_id = {line.id: line for line in order.lines}
                for i, receipt in enumerate(lines):
                    if receipt.line_id not in by_id:
                        raise ValidationError(
                            f"lines[{i}].line_id",
                            f"line {receipt.line_id} does not belong to {order.reference}",
                        )
                    if receipt.quantity is None or receipt.quantity < 0:
                        raise InvalidQuantityError(f"lines[{i}].quantity", receipt.quantity)

                self._check_version(order, expected_version)
                self._bump_version(order, expected_version)

                now = self._clock.now()
                receipt_date = receipt_date or self._clock.today()
                day = f"{receipt_date:%Y%m%d}"
                seq = self._sequences.next_value(
                    SequenceService.scoped(SequenceService.RECEPTION, day)
                )
                reception = ReceptionModel(
                    reference=f"{purchasing.reception_reference_prefix}-{day}-{seq:03d}",
                    supplier_id=order.supplier_id,
                    purchase_order_id=order.id,
                    receipt_date=receipt_date,
                    delivery_note_number=delivery_note_number,
                    created_by_id=actor_id,
                )
                self._session.add(reception)
                self._session.flush()

                over_received = False
                movements = 0
                lot_numbers: list[str] = []
                for receipt in lines:
                    line = by_id[receipt.line_id]
                    new_total = (line.quantity_received or 0.0) + receipt.quantity
                    # Snap float drift so 0.1 + 0.2 closes a line ordered at 0.3.
                    if abs(new_total - line.quantity) <= purchasing.quantity_epsilon:
                        new_total = line.quantity
                    if new_total > line.quantity:
                        if purchasing.over_receipt_policy == OverReceiptPolicy.REJECT:
                            logger.warning(
                                "over_receipt_rejected",
                                extra={
                                    "line_id": str(line.id),
                                    "ordered": line.quantity,
                                    "received": new_total,
                                },
                            )
                            raise OverReceiptError(str(line.id), line.quantity, new_total)
                        over_received = True
                        logger.warning(
                            "over_receipt_accepted",
                            extra={
                                "line_id": str(line.id),
                                "ordered": line.quantity,
                                "received": new_total,
                            },
                        )
                    line.quantity_received = new_total
                    line.updated_by_id = actor_id

                    if receipt.quantity <= 0:
                        continue

                    lot_number = receipt.lot_number or self._generated_lot_number(
                        receipt_date, line.material.code, set(lot_numbers)
                    )
                    lot = LotModel(
                        lot_number=lot_number,
                        material_id=line.material_id,
                        supplier_id=order.supplier_id,
                        reception_id=reception.id,
                        quantity_initial=receipt.quantity,
                        quantity_remaining=receipt.quantity,
                        unit_cost=line.unit_price,
                        received_on=receipt_date,
                        expiry_date=receipt.expiry_date,
                        created_by_id=actor_id,
                    )
                    self._session.add(lot)
                    self._session.flush()
                    lot_numbers.append(lot_number)

                    self._ledger.record_movement(
                        material_id=line.material_id,
                        direction=MovementDirection.IN,
                        quantity=receipt.quantity,
                        origin=MovementOrigin.RECEPTION,
                        actor_id=actor_id,
                        reference_type="Reception",
                        reference_id=reception.id,
                        lot_id=lot.id,
                        unit_cost=line.unit_price,
                        note=f"Reception {reception.reference} of {order.reference}",
                    )
                    reception.lines.append(
                        ReceptionLineModel(
                            order_line_id=line.id,
                            material_id=line.material_id,
                            lot_id=lot.id,
                            quantity=receipt.quantity,
                            unit_price=line.unit_price,
                            created_by_id=actor_id,
                        )
                    )
                    movements += 1

                fully_received = all(line.is_fully_received for line in order.lines)
                status_after = (
                    PurchaseOrderStatus.RECEIVED if fully_received else PurchaseOrderStatus.PARTIAL
                )
                require_transition(
                    PURCHASE_ORDER_WORKFLOW,
                    _ENTITY,
                    order.id,
                    status_before.value,
                    "receive",
                    status_after.value,
                )
                order.status = status_after.value
                order.updated_by_id = actor_id
                if fully_received:
                    order.received_at = now
                    order.received_by_id = actor_id

                late = order.expected_delivery is not None and receipt_date > order.expected_delivery
                order.supplier.record_delivery(late)
                order.supplier.performance_updated_at = now
                self._session.flush()

                if fully_received and order.requisition_id is not None:
                    self._close_requisition_if_complete(order.requisition_id, actor_id)

                self._auditor.record_transition(
                    entity_type=_ENTITY,
                    entity_id=order.id,
                    action=(
                        AuditAction.PO_RECEIVED
                        if fully_received
                        else AuditAction.PO_PARTIALLY_RECEIVED
                    ),
                    actor_id=actor_id,
                    status_before=status_before.value,
                    status_after=status_after.value,
                    reference=order.reference,
                    reception_id=reception.id,
                    reception_reference=reception.reference,
                    movements_created=movements,
                    lines_received=len(lines),
                    received={str(r.line_id): r.quantity for r in lines},
                    over_received=over_received,
                    late=late,
                    version=order.version,
                )
                self._commit()

                logger.info(
                    "purchase_order_received",
                    extra={
                        "reference": order.reference,
                        "reception_reference": reception.reference,
                        "status_after": status_after.value,
                        "movements_created": movements,
                    },
                )
                return ReceiveResult(
                    order=order.to_dto(),
                    status_before=status_before,
                    status_after=status_after,
                    reception_id=reception.id,
                    reception_reference=reception.reference,
                    movements_created=movements,
                    lots_created=tuple(lot_numbers),
                    over_received=over_received,
                )
        except Exception:
            self._rollback()
            raise

    def _close_requisition_if_complete(self, requisition_id: UUID, actor_id: UUID) -> None:
        statuses = self._session.execute(
            select(PurchaseOrderModel.status).where(
                PurchaseOrderModel.requisition_id == requisition_id
            )
        ).scalars().all()
        if not all(s == PurchaseOrderStatus.RECEIVED.value for s in statuses):
            return
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None or requisition.status != RequisitionStatus.ORDERED.value:
            return
        require_transition(
            REQUISITION_WORKFLOW, "Requisition", requisition.id, requisition.status, "close"
        )
        requisition.status = RequisitionStatus.CLOSED.value
        requisition.closed_at = self._clock.now()
        requisition.updated_by_id = actor_id
        self._session.flush()
        self._auditor.record_transition(
            entity_type="Requisition",
            entity_id=requisition.id,
            action=AuditAction.REQUISITION_CLOSED,
            actor_id=actor_id,
            status_before=RequisitionStatus.ORDERED.value,
            status_after=RequisitionStatus.CLOSED.value,
            reference=requisition.reference,
        )
        logger.info("requisition_closed", extra={"requisition_id": str(requisition_id)})

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel(
        self,
        order_id: UUID,
        reason: str,
        actor_id: UUID,
        actor_role: str | None,
        expected_version: int,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """
        DRAFT / SENT / CONFIRMED -> CANCELLED.

        Check order: idempotent replay, received quantities and status
        (regardless of role), administrative role, reason length, version.
        """
        purchasing = self._policy.purchasing
        try:
            with LogContext.bind(order_id=str(order_id), actor_id=str(actor_id)):
                order = self._load(order_id)
                replayed = self._replay(order, "cancel", idempotency_key)
                if replayed is not None:
                    return replayed

                received_total = sum(line.quantity_received or 0.0 for line in order.lines)
                if received_total > 0:
                    raise ReceivedQuantityConflictError(order.id, received_total)
                status_before = PurchaseOrderStatus(order.status)
                require_transition(
                    PURCHASE_ORDER_WORKFLOW, _ENTITY, order.id, order.status, "cancel"
                )

                if actor_role != purchasing.admin_role:
                    logger.warning(
                        "purchase_order_cancel_unauthorized",
                        extra={"reference": order.reference, "actor_role": actor_role},
                    )
                    raise AuthorizationError("cancel", actor_role, purchasing.admin_role)

                cleaned = (reason or "").strip()
                if len(cleaned) < purchasing.cancel_reason_min_length:
                    raise ReasonTooShortError(
                        "reason", purchasing.cancel_reason_min_length, len(cleaned)
                    )

                self._check_version(order, expected_version)
                self._bump_version(order, expected_version)

                order.status = PurchaseOrderStatus.CANCELLED.value
                order.cancelled_at = self._clock.now()
                order.cancelled_by_id = actor_id
                order.cancellation_reason = cleaned
                order.updated_by_id = actor_id
                self._session.flush()

                event = self._auditor.record_transition(
                    entity_type=_ENTITY,
                    entity_id=order.id,
                    action=AuditAction.PO_CANCELLED,
                    actor_id=actor_id,
                    status_before=status_before.value,
                    status_after=PurchaseOrderStatus.CANCELLED.value,
                    reference=order.reference,
                    reason=cleaned,
                    actor_role=actor_role,
                    idempotency_key=idempotency_key,
                    version=order.version,
                )
                self._remember(
                    order,
                    "cancel",
                    idempotency_key,
                    status_before,
                    PurchaseOrderStatus.CANCELLED,
                    event.seq,
                    actor_id,
                )
                self._commit()

                logger.info(
                    "purchase_order_cancelled",
                    extra={"reference": order.reference, "status_before": status_before.value},
                )
                return TransitionResult(
                    order=order.to_dto(),
                    action="cancel",
                    status_before=status_before,
                    status_after=PurchaseOrderStatus.CANCELLED,
                    audit_seq=event.seq,
                )
        except Exception:
            self._rollback()
            raise

    # =========================================================================
    # Advisory locks
    # =========================================================================

    def try_advisory_lock(
        self,
        order_id: UUID,
        holder_id: UUID,
        ttl_minutes: int | None = None,
    ) -> AdvisoryLockResult:
        """
        Grant (or renew) a cooperative edit hold.

        Granted when no unexpired hold exists or ``holder_id`` already holds
        it; otherwise returns the current holder with ``acquired=False``.
        Transitions ignore these fields.
        """
        ttl = ttl_minutes if ttl_minutes is not None else self._policy.purchasing.lock_ttl_minutes
        try:
            if ttl <= 0:
                raise ValidationError("ttl_minutes", "must be positive")
            order = self._load(order_id)
            now = self._clock.now()
            expires_at = now + timedelta(minutes=ttl)

            result = self._session.execute(
                update(PurchaseOrderModel)
                .where(
                    PurchaseOrderModel.id == order.id,
                    or_(
                        PurchaseOrderModel.lock_holder_id.is_(None),
                        PurchaseOrderModel.lock_holder_id == holder_id,
                        PurchaseOrderModel.lock_expires_at.is_(None),
                        PurchaseOrderModel.lock_expires_at <= now,
                    ),
                )
                .values(
                    lock_holder_id=holder_id,
                    lock_acquired_at=now,
                    lock_expires_at=expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            acquired = result.rowcount == 1
            self._session.refresh(order)
            self._commit()

            if acquired:
                logger.info(
                    "advisory_lock_acquired",
                    extra={"order_id": str(order_id), "holder_id": str(holder_id), "ttl_minutes": ttl},
                )
                return AdvisoryLockResult(True, holder_id, now, expires_at)

            logger.info(
                "advisory_lock_denied",
                extra={
                    "order_id": str(order_id),
                    "holder_id": str(holder_id),
                    "current_holder_id": str(order.lock_holder_id),
                },
            )
            return AdvisoryLockResult(
                False, order.lock_holder_id, order.lock_acquired_at, order.lock_expires_at
            )
        except Exception:
            self._rollback()
            raise

    def release_advisory_lock(self, order_id: UUID, holder_id: UUID) -> bool:
        """Clear the hold; only its holder may release it."""
        try:
            order = self._load(order_id)
            result = self._session.execute(
                update(PurchaseOrderModel)
                .where(
                    PurchaseOrderModel.id == order.id,
                    PurchaseOrderModel.lock_holder_id == holder_id,
                )
                .values(lock_holder_id=None, lock_acquired_at=None, lock_expires_at=None)
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount == 1
            self._session.refresh(order)
            self._commit()
            logger.info(
                "advisory_lock_released" if released else "advisory_lock_release_refused",
                extra={"order_id": str(order_id), "holder_id": str(holder_id)},
            )
            return released
        except Exception:
            self._rollback()
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    def get_order(self, order_id: UUID) -> PurchaseOrder:
        return self._load(order_id).to_dto()

    def list_orders(self, status: PurchaseOrderStatus | None = None) -> list[PurchaseOrder]:
        stmt = select(PurchaseOrderModel).order_by(PurchaseOrderModel.reference)
        if status is not None:
            stmt = stmt.where(PurchaseOrderModel.status == PurchaseOrderStatus(status).value)
        return [o.to_dto() for o in self._session.execute(stmt).scalars()]

    def count_open_orders(self) -> int:
        return self._session.execute(
            select(func.count(PurchaseOrderModel.id)).where(
                PurchaseOrderModel.status.in_(
                    (PurchaseOrderStatus.DRAFT.value,) + OPEN_STATUSES
                )
            )
        ).scalar_one()

    def list_late_orders(self) -> list[LatePurchaseOrder]:
        """
        Open orders (SENT, CONFIRMED, PARTIAL) whose expected delivery is
        before today, oldest first.
        """
        today = self._clock.today()
        critical_days = self._policy.purchasing.late_critical_days
        orders = self._session.execute(
            select(PurchaseOrderModel)
            .where(
                PurchaseOrderModel.status.in_(OPEN_STATUSES),
                PurchaseOrderModel.expected_delivery < today,
            )
            .order_by(PurchaseOrderModel.expected_delivery, PurchaseOrderModel.reference)
        ).scalars().all()

        late = []
        for order in orders:
            days_late = (today - order.expected_delivery).days
            is_critical = days_late >= critical_days
            has_critical_material = any(
                line.material.criticality >= Criticality.HIGH for line in order.lines
            )
            if is_critical and has_critical_material:
                impact = LateImpact.BLOCKING
            elif is_critical:
                impact = LateImpact.MAJOR
            else:
                impact = LateImpact.MINOR
            late.append(
                LatePurchaseOrder(
                    order_id=order.id,
                    reference=order.reference,
                    supplier_id=order.supplier_id,
                    supplier_name=order.supplier.name,
                    status=PurchaseOrderStatus(order.status),
                    expected_delivery=order.expected_delivery,
                    days_late=days_late,
                    is_critical=is_critical,
                    has_critical_material=has_critical_material,
                    impact=impact,
                )
            )
        return late

    def late_order_stats(self) -> LateOrderStats:
        today = self._clock.today()
        critical_cutoff = today - timedelta(days=self._policy.purchasing.late_critical_days)

        def count(*criteria) -> int:
            return self._session.execute(
                select(func.count(PurchaseOrderModel.id)).where(
                    PurchaseOrderModel.status.in_(OPEN_STATUSES), *criteria
                )
            ).scalar_one()

        return LateOrderStats(
            total_active=count(),
            total_late=count(PurchaseOrderModel.expected_delivery < today),
            critical_late=count(PurchaseOrderModel.expected_delivery <= critical_cutoff),
        )
