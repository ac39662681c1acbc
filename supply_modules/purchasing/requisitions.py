"""
Requisition service.

Internal purchase requests: DRAFT -> SUBMITTED -> APPROVED | REJECTED.
Conversion of an approved requisition into purchase orders is handled by
``PurchaseOrderLifecycle.create_from_requisition``; closing happens there
too, once every resulting order is received.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from supply_config import SupplyPolicy, get_active_policy
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.domain.workflow import require_transition
from supply_kernel.exceptions import (
    InvalidQuantityError,
    NotFoundError,
    ReasonTooShortError,
    ValidationError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.models.audit_event import AuditAction
from supply_kernel.services.auditor_service import AuditorService
from supply_kernel.services.sequence_service import SequenceService
from supply_modules.catalog.orm import MaterialModel
from supply_modules.purchasing.models import Requisition, RequisitionLineInput, RequisitionStatus
from supply_modules.purchasing.orm import RequisitionLineModel, RequisitionModel
from supply_modules.purchasing.workflows import REQUISITION_WORKFLOW

logger = get_logger("modules.purchasing.requisitions")

_ENTITY = "Requisition"


class RequisitionService:
    """
    Creates requisitions and walks them through approval.

    Guarantees:
        - Each public mutating method commits on success and rolls back on
          failure (``auto_commit=True``).
        - Every status change is audited with before/after status.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SupplyPolicy | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or get_active_policy()
        self._auditor = AuditorService(session, self._clock)
        self._sequences = SequenceService(session)
        self._auto_commit = auto_commit

    def _commit(self) -> None:
        if self._auto_commit:
            self._session.commit()

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    def _load(self, requisition_id: UUID) -> RequisitionModel:
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise NotFoundError(_ENTITY, requisition_id)
        return requisition

    def create(
        self,
        lines: Sequence[RequisitionLineInput],
        actor_id: UUID,
        notes: str | None = None,
    ) -> Requisition:
        """Create a DRAFT requisition numbered ``DA-{year}-{nnnnn}``."""
        try:
            if not lines:
                raise ValidationError("lines", "at least one line is required")
            known = set(
                self._session.execute(
                    select(MaterialModel.id).where(
                        MaterialModel.id.in_({line.material_id for line in lines})
                    )
                ).scalars()
            )
            for i, line in enumerate(lines):
                if line.material_id not in known:
                    raise NotFoundError("Material", line.material_id)
                if line.quantity is None or line.quantity <= 0:
                    raise InvalidQuantityError(f"lines[{i}].quantity", line.quantity)

            year = self._clock.today().year
            seq = self._sequences.next_value(
                SequenceService.scoped(SequenceService.REQUISITION, year)
            )
            prefix = self._policy.purchasing.requisition_reference_prefix
            requisition = RequisitionModel(
                reference=f"{prefix}-{year}-{seq:05d}",
                status=RequisitionStatus.DRAFT.value,
                notes=notes,
                created_by_id=actor_id,
                lines=[
                    RequisitionLineModel(
                        material_id=line.material_id,
                        quantity=float(line.quantity),
                        supplier_id=line.supplier_id,
                        created_by_id=actor_id,
                    )
                    for line in lines
                ],
            )
            self._session.add(requisition)
            self._session.flush()

            self._auditor.record_transition(
                entity_type=_ENTITY,
                entity_id=requisition.id,
                action=AuditAction.REQUISITION_CREATED,
                actor_id=actor_id,
                status_before=None,
                status_after=RequisitionStatus.DRAFT.value,
                reference=requisition.reference,
                line_count=len(lines),
            )
            self._commit()
            logger.info(
                "requisition_created",
                extra={"reference": requisition.reference, "line_count": len(lines)},
            )
            return requisition.to_dto()
        except Exception:
            self._rollback()
            raise

    def _transition(
        self,
        requisition_id: UUID,
        action: str,
        audit_action: AuditAction,
        actor_id: UUID,
        **details,
    ) -> Requisition:
        requisition = self._load(requisition_id)
        transition = require_transition(
            REQUISITION_WORKFLOW, _ENTITY, requisition.id, requisition.status, action
        )
        status_before = requisition.status
        now = self._clock.now()

        requisition.status = transition.to_state
        requisition.updated_by_id = actor_id
        if action == "submit":
            requisition.submitted_at, requisition.submitted_by_id = now, actor_id
        elif action == "approve":
            requisition.approved_at, requisition.approved_by_id = now, actor_id
        elif action == "reject":
            requisition.rejected_at, requisition.rejected_by_id = now, actor_id
            requisition.rejection_reason = details["reason"]
        self._session.flush()

        self._auditor.record_transition(
            entity_type=_ENTITY,
            entity_id=requisition.id,
            action=audit_action,
            actor_id=actor_id,
            status_before=status_before,
            status_after=requisition.status,
            reference=requisition.reference,
            **details,
        )
        logger.info(
            f"requisition_{action}",
            extra={
                "reference": requisition.reference,
                "status_before": status_before,
                "status_after": requisition.status,
            },
        )
        return requisition.to_dto()

    def submit(self, requisition_id: UUID, actor_id: UUID) -> Requisition:
        try:
            result = self._transition(
                requisition_id, "submit", AuditAction.REQUISITION_SUBMITTED, actor_id
            )
            self._commit()
            return result
        except Exception:
            self._rollback()
            raise

    def approve(self, requisition_id: UUID, actor_id: UUID) -> Requisition:
        try:
            result = self._transition(
                requisition_id, "approve", AuditAction.REQUISITION_APPROVED, actor_id
            )
            self._commit()
            return result
        except Exception:
            self._rollback()
            raise

    def reject(self, requisition_id: UUID, reason: str, actor_id: UUID) -> Requisition:
        """SUBMITTED -> REJECTED; the reason uses the cancellation minimum length."""
        try:
            cleaned = (reason or "").strip()
            minimum = self._policy.purchasing.cancel_reason_min_length
            if len(cleaned) < minimum:
                raise ReasonTooShortError("reason", minimum, len(cleaned))
            result = self._transition(
                requisition_id,
                "reject",
                AuditAction.REQUISITION_REJECTED,
                actor_id,
                reason=cleaned,
            )
            self._commit()
            return result
        except Exception:
            self._rollback()
            raise

    def get(self, requisition_id: UUID) -> Requisition:
        return self._load(requisition_id).to_dto()
