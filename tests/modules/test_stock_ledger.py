"""
Tests for StockLedgerEngine, RiskScoreAggregator and RequisitionAdvisor wiring.

Validates:
- Current stock = SUM(IN) - SUM(OUT) over non-deleted movements
- Batched reads: one entry per requested material, zero when no movements
- Soft deletion excludes a movement, is audited, and cannot be repeated
- Ledger rows are append-only (ORM immutability listener)
- Risk snapshots use effective criticality from active recipes
- Metrics batch computes trailing average consumption and cached stock
"""

from uuid import uuid4

import pytest

from supply_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidQuantityError,
    MovementAlreadyDeletedError,
    NotFoundError,
    ValidationError,
)
from supply_kernel.models.audit_event import AuditAction
from supply_kernel.services.auditor_service import AuditorService
from supply_modules.catalog.models import Criticality
from supply_modules.stock.models import MovementDirection, MovementOrigin, RiskState
from supply_modules.stock.orm import StockMovementModel
from supply_modules.stock.risk_index import RiskIndexStatus, RiskScoreAggregator


def _consume(ledger, material, quantity, actor_id):
    return ledger.record_movement(
        material_id=material.id,
        direction=MovementDirection.OUT,
        quantity=quantity,
        origin=MovementOrigin.PRODUCTION,
        actor_id=actor_id,
    )


# =============================================================================
# Writes
# =============================================================================


class TestRecordMovement:
    def test_in_and_out_aggregate(self, ledger, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, 50)
        _consume(ledger, material, 12.5, test_actor_id)

        assert ledger.compute_current_stock([material.id]) == {material.id: 37.5}

    def test_non_positive_quantity_rejected(self, ledger, make_material, test_actor_id):
        material = make_material()
        for quantity in (0, -3):
            with pytest.raises(InvalidQuantityError):
                ledger.record_movement(
                    material.id, MovementDirection.IN, quantity, MovementOrigin.ADJUSTMENT, test_actor_id
                )

    def test_unknown_material(self, ledger, test_actor_id):
        with pytest.raises(NotFoundError):
            ledger.record_movement(
                uuid4(), MovementDirection.IN, 1, MovementOrigin.ADJUSTMENT, test_actor_id
            )

    def test_stock_may_go_negative(self, ledger, make_material, test_actor_id):
        material = make_material()
        _consume(ledger, material, 5, test_actor_id)
        assert ledger.compute_current_stock([material.id])[material.id] == -5.0

    def test_records_are_returned_as_dtos(self, ledger, make_material, test_actor_id):
        material = make_material()
        record = ledger.record_movement(
            material.id,
            MovementDirection.IN,
            8,
            MovementOrigin.RETURN,
            test_actor_id,
            reference_type="Manual",
            note="returned pallets",
        )
        assert record.signed_quantity == 8
        assert record.origin == MovementOrigin.RETURN
        assert record.reference_type == "Manual"


# =============================================================================
# Batched reads
# =============================================================================


class TestComputeCurrentStock:
    def test_materials_without_movements_are_zero(self, ledger, make_material, add_stock):
        stocked = make_material()
        empty = make_material()
        add_stock(stocked, 3)

        stock = ledger.compute_current_stock([stocked.id, empty.id])
        assert stock == {stocked.id: 3.0, empty.id: 0.0}

    def test_empty_request(self, ledger):
        assert ledger.compute_current_stock([]) == {}

    def test_duplicate_ids_collapse(self, ledger, make_material, add_stock):
        material = make_material()
        add_stock(material, 4)
        assert ledger.compute_current_stock([material.id, material.id]) == {material.id: 4.0}


# =============================================================================
# Soft deletion and immutability
# =============================================================================


class TestSoftDelete:
    def test_deleted_movement_excluded(self, ledger, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, 10)
        wrong = add_stock(material, 100)

        ledger.soft_delete_movement(wrong.id, test_actor_id, "duplicate entry from scanner")

        assert ledger.compute_current_stock([material.id])[material.id] == 10.0
        assert len(ledger.list_movements(material.id)) == 1
        assert len(ledger.list_movements(material.id, include_deleted=True)) == 2

    def test_soft_delete_is_audited(self, session, deterministic_clock, ledger, make_material, add_stock, test_actor_id):
        material = make_material()
        movement = add_stock(material, 10)
        ledger.soft_delete_movement(movement.id, test_actor_id, "counted twice")

        trace = AuditorService(session, deterministic_clock).get_trace("StockMovement", movement.id)
        assert trace.actions == (AuditAction.MOVEMENT_SOFT_DELETED.value,)
        assert trace.entries[0].payload["reason"] == "counted twice"

    def test_cannot_delete_twice(self, ledger, make_material, add_stock, test_actor_id):
        material = make_material()
        movement = add_stock(material, 10)
        ledger.soft_delete_movement(movement.id, test_actor_id, "first")
        with pytest.raises(MovementAlreadyDeletedError):
            ledger.soft_delete_movement(movement.id, test_actor_id, "second")

    def test_reason_required(self, ledger, make_material, add_stock, test_actor_id):
        material = make_material()
        movement = add_stock(material, 10)
        with pytest.raises(ValidationError):
            ledger.soft_delete_movement(movement.id, test_actor_id, "   ")

    def test_unknown_movement(self, ledger, test_actor_id):
        with pytest.raises(NotFoundError):
            ledger.soft_delete_movement(uuid4(), test_actor_id, "typo")

    def test_quantity_cannot_be_edited(self, session, make_material, add_stock):
        material = make_material()
        record = add_stock(material, 10)
        row = session.get(StockMovementModel, record.id)
        row.quantity = 11
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_movement_cannot_be_deleted(self, session, make_material, add_stock):
        material = make_material()
        record = add_stock(material, 10)
        session.delete(session.get(StockMovementModel, record.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


# =============================================================================
# Snapshots and risk index
# =============================================================================


class TestMaterialSnapshots:
    def test_recipe_usage_raises_criticality(self, ledger, make_material, make_recipe, add_stock):
        flour = make_material(criticality=Criticality.LOW)
        add_stock(flour, 100)
        make_recipe([(flour, 1)])
        make_recipe([(flour, 2)])
        make_recipe([(flour, 1)], is_active=False)

        (snap,) = ledger.material_snapshots([flour.id])
        assert snap.active_recipe_usage == 2
        assert snap.effective_criticality == Criticality.HIGH
        assert snap.manual_criticality == Criticality.LOW
        assert len(snap.impacted_recipes) == 2

    def test_zero_stock_in_active_recipe_is_blocking(self, ledger, make_material, make_recipe):
        sugar = make_material()
        make_recipe([(sugar, 1, False)])

        (snap,) = ledger.material_snapshots([sugar.id])
        assert snap.state == RiskState.BLOCKING
        assert snap.mandatory_in_active_recipe is False

    def test_default_scope_skips_inactive_and_untracked(self, ledger, make_material):
        tracked = make_material()
        make_material(is_active=False)
        make_material(is_stock_tracked=False)

        ids = {s.material_id for s in ledger.material_snapshots()}
        assert ids == {tracked.id}

    def test_coverage_days(self, ledger, make_material, add_stock):
        material = make_material(average_daily_consumption=4.0, lead_time_days=10)
        add_stock(material, 20)

        (snap,) = ledger.material_snapshots([material.id])
        assert snap.coverage_days == 5.0
        assert snap.coverage_below_lead_time

    def test_primary_supplier_reference(self, ledger, make_material, make_supplier):
        supplier = make_supplier(grade="B")
        material = make_material(supplier=supplier)

        (snap,) = ledger.material_snapshots([material.id])
        assert snap.primary_supplier.id == supplier.id
        assert snap.primary_supplier.grade.value == "B"


class TestRiskScoreAggregator:
    def test_index_over_catalog(self, ledger, policy, make_material, make_recipe, add_stock):
        blocked_a = make_material()
        blocked_b = make_material()
        make_recipe([(blocked_a, 1), (blocked_b, 1)])
        healthy = make_material(min_stock=5)
        add_stock(healthy, 100)

        index = RiskScoreAggregator(ledger, policy.risk).current_index()
        assert index.value == 60
        assert index.status == RiskIndexStatus.WATCH
        assert index.breakdown[RiskState.BLOCKING] == 2
        assert index.breakdown[RiskState.HEALTHY] == 1

    def test_defaults_to_active_policy(self, ledger, policy_with, make_material, make_recipe, monkeypatch):
        heavier = policy_with(risk={"weight_blocking": 40})
        monkeypatch.setattr("supply_modules.stock.risk_index.get_active_policy", lambda: heavier)
        blocked_a = make_material()
        blocked_b = make_material()
        make_recipe([(blocked_a, 1), (blocked_b, 1)])

        index = RiskScoreAggregator(ledger).current_index()
        assert index.value == 80
        assert index.status == RiskIndexStatus.CRITICAL


# =============================================================================
# Metrics batch
# =============================================================================


class TestRecomputeMetrics:
    def test_average_daily_consumption(self, session, ledger, deterministic_clock, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, 1000)
        _consume(ledger, material, 60, test_actor_id)
        deterministic_clock.advance(days=5)
        _consume(ledger, material, 30, test_actor_id)

        result = ledger.recompute_metrics()

        session.refresh(material)
        assert result.updated == 1
        assert result.window_days == 30
        assert material.average_daily_consumption == pytest.approx(90 / 30)
        assert material.cached_stock == 910.0

    def test_movements_outside_window_ignored(self, session, ledger, deterministic_clock, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, 1000)
        _consume(ledger, material, 300, test_actor_id)
        deterministic_clock.advance(days=31)

        ledger.recompute_metrics()

        session.refresh(material)
        assert material.average_daily_consumption == 0.0
        assert material.cached_stock == 700.0

    def test_deleted_consumption_ignored(self, session, ledger, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, 100)
        wrong = _consume(ledger, material, 60, test_actor_id)
        ledger.soft_delete_movement(wrong.id, test_actor_id, "posted to wrong material")

        ledger.recompute_metrics()

        session.refresh(material)
        assert material.average_daily_consumption == 0.0
        assert material.cached_stock == 100.0
