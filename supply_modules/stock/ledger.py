"""
StockLedgerEngine -- the append-only movement ledger and its derived reads.

Responsibility:
    Writes stock movements and derives everything else from them: current
    stock per material (one batched aggregate), per-material risk snapshots,
    and the scheduled metrics batch (average daily consumption, cached stock).

Architecture position:
    Modules > Stock.  Leaf component: RiskScoreAggregator, RequisitionAdvisor,
    ProductionGate, AlertEngine and PurchaseOrderLifecycle.receive() all read
    or write through it.

Invariants enforced:
    - Current stock = SUM(IN) - SUM(OUT) over non-deleted movements, computed
      for any number of materials in ONE grouped query.
    - Movements are never updated or deleted; corrections use the soft-delete
      stamp (kernel immutability listener).
    - ``cached_stock`` is only ever written from a fresh ledger aggregate.

Failure modes:
    - InvalidQuantityError for non-positive movement quantities.
    - NotFoundError for unknown materials or movements.
    - MovementAlreadyDeletedError when soft-deleting twice.

Audit relevance:
    Soft deletions are audited.  The engine never commits: it runs inside the
    caller's transaction so a reception's lots, movements and order updates
    commit or roll back together.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from supply_config import SupplyPolicy, get_active_policy
from supply_kernel.db.base import SYSTEM_ACTOR_ID
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.exceptions import (
    InvalidQuantityError,
    MovementAlreadyDeletedError,
    NotFoundError,
    ValidationError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.models.audit_event import AuditAction
from supply_kernel.services.auditor_service import AuditorService
from supply_modules.catalog.models import SupplierGrade
from supply_modules.catalog.orm import MaterialModel, RecipeItemModel, RecipeModel
from supply_modules.stock.models import (
    MaterialRiskSnapshot,
    MetricsBatchResult,
    MovementDirection,
    MovementOrigin,
    StockMovementRecord,
    SupplierRef,
)
from supply_modules.stock.orm import StockMovementModel
from supply_modules.stock.risk import (
    compute_coverage_days,
    compute_effective_criticality,
    compute_risk_state,
)

logger = get_logger("modules.stock.ledger")


@dataclass
class RecipeUsage:
    """Active-recipe usage of one material."""

    recipe_names: set[str] = field(default_factory=set)
    recipe_ids: set[UUID] = field(default_factory=set)
    mandatory: bool = False

    @property
    def count(self) -> int:
        return len(self.recipe_ids)


class StockLedgerEngine:
    """
    Ledger writer and batched stock reader.

    Contract:
        Every read of current stock goes through ``compute_current_stock``;
        nothing reads ``MaterialModel.cached_stock`` as truth.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT manage lots' remaining quantities (FIFO consumption is
          part of the production flows).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SupplyPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or get_active_policy()
        self._auditor = AuditorService(session, self._clock)

    # =========================================================================
    # Writes
    # =========================================================================

    def record_movement(
        self,
        material_id: UUID,
        direction: MovementDirection,
        quantity: float,
        origin: MovementOrigin,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        lot_id: UUID | None = None,
        unit_cost: int | None = None,
        note: str | None = None,
    ) -> StockMovementRecord:
        """Append one movement to the ledger and flush it."""
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError("quantity", quantity)

        if self._session.get(MaterialModel, material_id) is None:
            raise NotFoundError("Material", material_id)

        movement = StockMovementModel(
            material_id=material_id,
            direction=MovementDirection(direction).value,
            quantity=float(quantity),
            origin=MovementOrigin(origin).value,
            occurred_at=self._clock.now(),
            reference_type=reference_type,
            reference_id=reference_id,
            lot_id=lot_id,
            unit_cost=unit_cost,
            note=note,
            created_by_id=actor_id,
        )
        self._session.add(movement)
        self._session.flush()

        logger.info(
            "stock_movement_recorded",
            extra={
                "movement_id": str(movement.id),
                "material_id": str(material_id),
                "direction": movement.direction,
                "quantity": movement.quantity,
                "origin": movement.origin,
            },
        )
        return movement.to_dto()

    def soft_delete_movement(
        self,
        movement_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> StockMovementRecord:
        """Exclude a movement from every stock aggregate, keeping the row."""
        if not reason or not reason.strip():
            raise ValidationError("reason", "a deletion reason is required")

        movement = self._session.get(StockMovementModel, movement_id)
        if movement is None:
            raise NotFoundError("StockMovement", movement_id)
        if movement.is_deleted:
            raise MovementAlreadyDeletedError(movement_id)

        movement.is_deleted = True
        movement.deleted_at = self._clock.now()
        movement.deleted_by_id = actor_id
        movement.deletion_reason = reason.strip()
        movement.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record(
            entity_type="StockMovement",
            entity_id=movement.id,
            action=AuditAction.MOVEMENT_SOFT_DELETED,
            actor_id=actor_id,
            payload={
                "material_id": movement.material_id,
                "direction": movement.direction,
                "quantity": movement.quantity,
                "reason": movement.deletion_reason,
            },
        )
        logger.info(
            "stock_movement_soft_deleted",
            extra={"movement_id": str(movement_id), "material_id": str(movement.material_id)},
        )
        return movement.to_dto()

    # =========================================================================
    # Reads
    # =========================================================================

    def compute_current_stock(self, material_ids: Iterable[UUID]) -> dict[UUID, float]:
        """
        Current stock of each material, from one grouped aggregate.

        Materials without movements map to 0.0.
        """
        ids = list(dict.fromkeys(material_ids))
        if not ids:
            return {}

        signed = case(
            (StockMovementModel.direction == MovementDirection.IN.value, StockMovementModel.quantity),
            else_=-StockMovementModel.quantity,
        )
        rows = self._session.execute(
            select(StockMovementModel.material_id, func.sum(signed))
            .where(
                StockMovementModel.material_id.in_(ids),
                StockMovementModel.is_deleted.is_(False),
            )
            .group_by(StockMovementModel.material_id)
        ).all()

        stock = {material_id: 0.0 for material_id in ids}
        for material_id, total in rows:
            stock[material_id] = float(total or 0.0)
        return stock

    def list_movements(
        self,
        material_id: UUID,
        include_deleted: bool = False,
    ) -> list[StockMovementRecord]:
        stmt = select(StockMovementModel).where(StockMovementModel.material_id == material_id)
        if not include_deleted:
            stmt = stmt.where(StockMovementModel.is_deleted.is_(False))
        stmt = stmt.order_by(StockMovementModel.occurred_at, StockMovementModel.created_at)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def active_recipe_usage(self, material_ids: Iterable[UUID]) -> dict[UUID, RecipeUsage]:
        """Active recipes referencing each material, from one joined query."""
        ids = list(dict.fromkeys(material_ids))
        usage: dict[UUID, RecipeUsage] = {material_id: RecipeUsage() for material_id in ids}
        if not ids:
            return usage

        rows = self._session.execute(
            select(
                RecipeItemModel.material_id,
                RecipeModel.id,
                RecipeModel.name,
                RecipeItemModel.is_mandatory,
            )
            .join(RecipeModel, RecipeItemModel.recipe_id == RecipeModel.id)
            .where(
                RecipeModel.is_active.is_(True),
                RecipeItemModel.material_id.in_(ids),
            )
        ).all()

        for material_id, recipe_id, recipe_name, is_mandatory in rows:
            entry = usage[material_id]
            entry.recipe_ids.add(recipe_id)
            entry.recipe_names.add(recipe_name)
            entry.mandatory = entry.mandatory or bool(is_mandatory)
        return usage

    def _load_materials(
        self,
        material_ids: Iterable[UUID] | None,
    ) -> list[MaterialModel]:
        stmt = select(MaterialModel)
        if material_ids is None:
            stmt = stmt.where(
                MaterialModel.is_active.is_(True),
                MaterialModel.is_stock_tracked.is_(True),
            )
        else:
            stmt = stmt.where(MaterialModel.id.in_(list(material_ids)))
        return list(self._session.execute(stmt.order_by(MaterialModel.code)).scalars())

    def material_snapshots(
        self,
        material_ids: Iterable[UUID] | None = None,
    ) -> list[MaterialRiskSnapshot]:
        """
        Risk snapshot of each material.

        With no ids, covers every active stock-tracked material.  The state
        is classified with the effective criticality.
        """
        materials = self._load_materials(material_ids)
        ids = [m.id for m in materials]
        stock_map = self.compute_current_stock(ids)
        usage_map = self.active_recipe_usage(ids)
        multiplier = self._policy.risk.order_threshold_multiplier

        snapshots = []
        for material in materials:
            stock = stock_map.get(material.id, 0.0)
            usage = usage_map.get(material.id, RecipeUsage())
            effective = compute_effective_criticality(material.criticality, usage.count)
            state = compute_risk_state(
                stock,
                material.min_stock,
                material.safety_threshold,
                material.order_threshold,
                effective,
                usage.count > 0,
                order_threshold_multiplier=multiplier,
            )
            supplier = material.primary_supplier
            snapshots.append(
                MaterialRiskSnapshot(
                    material_id=material.id,
                    code=material.code,
                    name=material.name,
                    unit=material.unit,
                    current_stock=stock,
                    min_stock=material.min_stock,
                    safety_threshold=material.safety_threshold,
                    order_threshold=material.order_threshold,
                    lead_time_days=material.lead_time_days,
                    average_daily_consumption=material.average_daily_consumption,
                    coverage_days=compute_coverage_days(stock, material.average_daily_consumption),
                    manual_criticality=material.criticality,
                    effective_criticality=effective,
                    state=state,
                    active_recipe_usage=usage.count,
                    mandatory_in_active_recipe=usage.mandatory,
                    impacted_recipes=tuple(sorted(usage.recipe_names)),
                    primary_supplier=(
                        SupplierRef(
                            id=supplier.id,
                            name=supplier.name,
                            grade=SupplierGrade(supplier.grade) if supplier.grade else None,
                        )
                        if supplier is not None
                        else None
                    ),
                )
            )
        return snapshots

    # =========================================================================
    # Scheduled batch
    # =========================================================================

    def recompute_metrics(self) -> MetricsBatchResult:
        """
        Refresh average daily consumption and cached stock of every active
        tracked material.

        Average daily consumption = SUM(non-deleted OUT over the trailing
        window) / window days.  Two grouped queries regardless of catalog size.
        """
        now = self._clock.now()
        window_days = self._policy.stock.consumption_window_days
        since = now - timedelta(days=window_days)

        materials = self._load_materials(None)
        ids = [m.id for m in materials]
        stock_map = self.compute_current_stock(ids)

        consumption_rows = self._session.execute(
            select(StockMovementModel.material_id, func.sum(StockMovementModel.quantity))
            .where(
                StockMovementModel.material_id.in_(ids),
                StockMovementModel.direction == MovementDirection.OUT.value,
                StockMovementModel.is_deleted.is_(False),
                StockMovementModel.occurred_at >= since,
            )
            .group_by(StockMovementModel.material_id)
        ).all() if ids else []
        consumption = {material_id: float(total or 0.0) for material_id, total in consumption_rows}

        for material in materials:
            material.average_daily_consumption = consumption.get(material.id, 0.0) / window_days
            material.cached_stock = stock_map.get(material.id, 0.0)
            material.metrics_updated_at = now
            material.updated_by_id = SYSTEM_ACTOR_ID
        self._session.flush()

        logger.info(
            "material_metrics_recomputed",
            extra={"updated": len(materials), "window_days": window_days},
        )
        return MetricsBatchResult(updated=len(materials), window_days=window_days, computed_at=now)
