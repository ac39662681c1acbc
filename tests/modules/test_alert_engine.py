"""
Tests for AlertEngine.

Validates:
- Deduplication: one active alert per (type, entity); acknowledging frees the slot
- Acknowledgement is audited and cannot be repeated
- Postponement: allowed durations, reason length, stockout refusal, rate limit
- Scan: critical materials, imminent ruptures, supplier regrading; idempotent
- Query helpers: ordering, counts, critical flag, supplier performance
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from supply_kernel.exceptions import (
    AlertAlreadyAcknowledgedError,
    InvalidPostponeDurationError,
    NotFoundError,
    RateLimitError,
    ReasonTooShortError,
    StockoutPostponeError,
)
from supply_kernel.models.audit_event import AuditAction, AuditEvent
from supply_kernel.services.auditor_service import AuditorService
from supply_modules.alerts.models import AlertEntityType, AlertSeverity, AlertType
from supply_modules.alerts.service import grade_for_delay_rate
from supply_modules.catalog.models import Criticality, SupplierGrade

REASON = "supplier confirmed truck is on its way"


def _raise_material_alert(alert_engine, material, severity=AlertSeverity.CRITICAL, alert_type=AlertType.MATERIAL_CRITICAL):
    return alert_engine.raise_alert(
        alert_type,
        severity,
        AlertEntityType.MATERIAL,
        material.id,
        f"{material.code} needs attention",
    )


# =============================================================================
# Raise / dedup / acknowledge
# =============================================================================


class TestRaiseAlert:
    def test_new_alert_is_active(self, alert_engine, make_material):
        material = make_material()
        alert = _raise_material_alert(alert_engine, material)

        assert alert.is_active
        assert alert.alert_type == AlertType.MATERIAL_CRITICAL
        assert "triggered_at" in alert.metadata

    def test_duplicate_returns_existing(self, alert_engine, make_material, captured_logs):
        material = make_material()
        first = _raise_material_alert(alert_engine, material)
        second = _raise_material_alert(alert_engine, material)

        assert second.id == first.id
        assert len(alert_engine.active_alerts()) == 1
        assert any(r["message"] == "alert_deduplicated" for r in captured_logs())

    def test_different_type_is_separate(self, alert_engine, make_material):
        material = make_material()
        _raise_material_alert(alert_engine, material)
        _raise_material_alert(
            alert_engine, material, AlertSeverity.WARNING, AlertType.RUPTURE_IMMINENT
        )
        assert len(alert_engine.active_alerts()) == 2

    def test_reraise_after_acknowledge_creates_new(self, alert_engine, make_material, test_actor_id):
        material = make_material()
        first = _raise_material_alert(alert_engine, material)
        alert_engine.acknowledge(first.id, test_actor_id)

        second = _raise_material_alert(alert_engine, material)
        assert second.id != first.id
        assert second.is_active

    def test_concurrent_insert_resolves_to_existing(self, alert_engine, make_material, monkeypatch, captured_logs):
        material = make_material()
        first = _raise_material_alert(alert_engine, material)

        # The lookup misses once, as if another writer inserted between check and insert
        lookup = alert_engine._find_active
        calls = []

        def miss_once(*args):
            calls.append(args)
            return None if len(calls) == 1 else lookup(*args)

        monkeypatch.setattr(alert_engine, "_find_active", miss_once)

        second = _raise_material_alert(alert_engine, material)

        assert second.id == first.id
        assert len(alert_engine.active_alerts()) == 1
        (record,) = [r for r in captured_logs() if r.get("race")]
        assert record["message"] == "alert_deduplicated"
        assert record["alert_id"] == str(first.id)


class TestAcknowledge:
    def test_acknowledge_is_audited(self, session, deterministic_clock, alert_engine, make_material, test_actor_id):
        material = make_material()
        alert = _raise_material_alert(alert_engine, material)

        acked = alert_engine.acknowledge(alert.id, test_actor_id)

        assert not acked.is_active
        assert acked.acknowledged_by_id == test_actor_id
        trace = AuditorService(session, deterministic_clock).get_trace("Alert", alert.id)
        assert trace.last_action == AuditAction.ALERT_ACKNOWLEDGED.value

    def test_acknowledge_twice(self, alert_engine, make_material, test_actor_id):
        material = make_material()
        alert = _raise_material_alert(alert_engine, material)
        alert_engine.acknowledge(alert.id, test_actor_id)
        with pytest.raises(AlertAlreadyAcknowledgedError):
            alert_engine.acknowledge(alert.id, test_actor_id)

    def test_unknown_alert(self, alert_engine, test_actor_id):
        with pytest.raises(NotFoundError):
            alert_engine.acknowledge(uuid4(), test_actor_id)


# =============================================================================
# Postpone
# =============================================================================


class TestPostpone:
    def test_postpone_updates_active_alerts(self, alert_engine, make_material, add_stock, test_actor_id, deterministic_clock):
        material = make_material()
        add_stock(material, 3)
        _raise_material_alert(alert_engine, material, AlertSeverity.WARNING, AlertType.RUPTURE_IMMINENT)

        result = alert_engine.postpone(material.id, "4h", REASON, test_actor_id)

        assert result.alerts_updated == 1
        assert result.postponements_in_window == 1
        assert result.postponed_until == deterministic_clock.now().replace(hour=16)
        (alert,) = alert_engine.active_alerts()
        assert alert.postponed_until == result.postponed_until.isoformat()

    def test_invalid_duration(self, alert_engine, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, 3)
        with pytest.raises(InvalidPostponeDurationError):
            alert_engine.postpone(material.id, "48h", REASON, test_actor_id)

    def test_reason_too_short(self, alert_engine, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, 3)
        with pytest.raises(ReasonTooShortError):
            alert_engine.postpone(material.id, "4h", "   later   ", test_actor_id)

    def test_stockout_never_postponed(self, alert_engine, make_material, test_actor_id):
        material = make_material()
        with pytest.raises(StockoutPostponeError):
            alert_engine.postpone(material.id, "24h", REASON, test_actor_id)

    def test_negative_stock_never_postponed(self, alert_engine, make_material, add_stock, test_actor_id):
        material = make_material()
        add_stock(material, -2)
        with pytest.raises(StockoutPostponeError):
            alert_engine.postpone(material.id, "4h", REASON, test_actor_id)

    def test_third_postpone_in_window_rate_limited(self, alert_engine, make_material, add_stock, test_actor_id, deterministic_clock):
        material = make_material()
        add_stock(material, 3)
        alert_engine.postpone(material.id, "4h", REASON, test_actor_id)
        deterministic_clock.advance(hours=5)
        alert_engine.postpone(material.id, "12h", REASON, test_actor_id)
        deterministic_clock.advance(hours=13)

        with pytest.raises(RateLimitError) as exc_info:
            alert_engine.postpone(material.id, "24h", REASON, test_actor_id)
        assert exc_info.value.limit == 2

    def test_window_slides(self, alert_engine, make_material, add_stock, test_actor_id, deterministic_clock):
        material = make_material()
        add_stock(material, 3)
        alert_engine.postpone(material.id, "4h", REASON, test_actor_id)
        alert_engine.postpone(material.id, "4h", REASON, test_actor_id)
        deterministic_clock.advance(days=7, seconds=1)

        result = alert_engine.postpone(material.id, "4h", REASON, test_actor_id)
        assert result.postponements_in_window == 1

    def test_unknown_material(self, alert_engine, test_actor_id):
        with pytest.raises(NotFoundError):
            alert_engine.postpone(uuid4(), "4h", REASON, test_actor_id)


# =============================================================================
# Scan
# =============================================================================


class TestScan:
    def test_blocking_material_out_of_stock(self, alert_engine, make_material):
        material = make_material(criticality=Criticality.BLOCKING)

        result = alert_engine.scan()

        assert result.material_critical == 1
        (alert,) = alert_engine.critical_unacknowledged()
        assert alert.entity_id == material.id
        assert alert.alert_type == AlertType.MATERIAL_CRITICAL

    def test_mandatory_ingredient_out_of_stock(self, alert_engine, make_material, make_recipe):
        material = make_material(criticality=Criticality.LOW)
        make_recipe([(material, 2)])

        result = alert_engine.scan()
        assert result.material_critical == 1

    def test_optional_ingredient_not_critical(self, alert_engine, make_material, make_recipe):
        material = make_material(criticality=Criticality.LOW)
        make_recipe([(material, 2, False)])

        result = alert_engine.scan()
        assert result.material_critical == 0

    def test_rupture_imminent(self, alert_engine, make_material, add_stock):
        material = make_material(average_daily_consumption=5.0, lead_time_days=10, min_stock=1)
        add_stock(material, 20)

        result = alert_engine.scan()

        assert result.rupture_imminent == 1
        (alert,) = alert_engine.active_alerts()
        assert alert.alert_type == AlertType.RUPTURE_IMMINENT
        assert alert.severity == AlertSeverity.WARNING
        assert alert.metadata["coverage_days"] == 4.0

    def test_scan_is_idempotent(self, alert_engine, make_material, make_recipe, make_supplier):
        material = make_material(criticality=Criticality.BLOCKING, average_daily_consumption=1.0)
        make_recipe([(material, 1)])
        make_supplier(grade="A", total_deliveries=10, late_deliveries=4)

        first = alert_engine.scan()
        count_after_first = len(alert_engine.active_alerts())
        second = alert_engine.scan()

        assert first.new_alerts == count_after_first
        assert second.new_alerts == 0
        assert len(alert_engine.active_alerts()) == count_after_first

    def test_supplier_first_grading_raises_nothing(self, session, alert_engine, make_supplier):
        supplier = make_supplier(grade=None, total_deliveries=10, late_deliveries=5)

        result = alert_engine.scan()

        session.refresh(supplier)
        assert supplier.grade == "C"
        assert result.supplier_degraded == 0
        assert alert_engine.active_alerts() == []

    def test_supplier_degraded(self, session, deterministic_clock, alert_engine, make_supplier):
        supplier = make_supplier(grade="A", total_deliveries=10, late_deliveries=4)

        result = alert_engine.scan()

        assert result.supplier_degraded == 1
        (alert,) = alert_engine.active_alerts()
        assert alert.alert_type == AlertType.SUPPLIER_DEGRADED
        # 40% late is above the critical delay rate
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.metadata["old_grade"] == "A"
        assert alert.metadata["new_grade"] == "C"
        trace = AuditorService(session, deterministic_clock).get_trace("Supplier", supplier.id)
        assert trace.actions == (AuditAction.SUPPLIER_GRADE_CHANGED.value,)

    def test_supplier_improvement_is_warning(self, alert_engine, make_supplier):
        make_supplier(grade="C", total_deliveries=20, late_deliveries=1)

        alert_engine.scan()

        (alert,) = alert_engine.active_alerts()
        assert alert.severity == AlertSeverity.WARNING

    def test_scan_audit_record(self, session, deterministic_clock, alert_engine):
        alert_engine.scan()
        auditor = AuditorService(session, deterministic_clock)
        since = deterministic_clock.now()
        assert auditor.validate_chain()
        actions = session.execute(
            select(AuditEvent.action).where(AuditEvent.occurred_at >= since)
        ).scalars().all()
        assert AuditAction.ALERT_SCAN_COMPLETED.value in actions

    def test_failed_audit_writes_do_not_undo_scan(
        self, session, deterministic_clock, alert_engine, make_material, make_supplier, monkeypatch, captured_logs
    ):
        make_material(criticality=Criticality.BLOCKING)
        supplier = make_supplier(grade="A", total_deliveries=10, late_deliveries=4)

        def unavailable(**kwargs):
            raise SQLAlchemyError("audit table unavailable")

        monkeypatch.setattr(alert_engine._auditor, "record", unavailable)

        result = alert_engine.scan()
        session.rollback()

        assert result.new_alerts == 2
        assert len(alert_engine.active_alerts()) == 2
        session.refresh(supplier)
        assert supplier.grade == "C"
        assert AuditorService(session, deterministic_clock).get_trace("Supplier", supplier.id).is_empty
        failures = [r for r in captured_logs() if r["message"] == "alert_scan_audit_failed"]
        assert [r["audit_action"] for r in failures] == [
            AuditAction.SUPPLIER_GRADE_CHANGED.value,
            AuditAction.ALERT_SCAN_COMPLETED.value,
        ]
        assert all(r["exc_type"] == "SQLAlchemyError" for r in failures)

    def test_scan_logs_correlation_id(self, alert_engine, make_material, captured_logs):
        make_material(criticality=Criticality.BLOCKING)
        alert_engine.scan()

        records = [r for r in captured_logs() if r["message"] == "alert_raised"]
        assert records
        assert all("correlation_id" in r for r in records)


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    def test_active_alerts_most_severe_first(self, alert_engine, make_material):
        warning = make_material()
        critical = make_material()
        _raise_material_alert(alert_engine, warning, AlertSeverity.WARNING, AlertType.RUPTURE_IMMINENT)
        _raise_material_alert(alert_engine, critical)

        alerts = alert_engine.active_alerts()
        assert [a.severity for a in alerts] == [AlertSeverity.CRITICAL, AlertSeverity.WARNING]

    def test_counts_and_critical_flag(self, alert_engine, make_material, test_actor_id):
        a = make_material()
        b = make_material()
        assert not alert_engine.has_critical_unacknowledged()

        first = _raise_material_alert(alert_engine, a)
        _raise_material_alert(alert_engine, b, AlertSeverity.WARNING, AlertType.RUPTURE_IMMINENT)
        assert alert_engine.has_critical_unacknowledged()

        alert_engine.acknowledge(first.id, test_actor_id)
        counts = alert_engine.alert_counts()
        assert counts.total == 2
        assert counts.critical == 1
        assert counts.warning == 1
        assert counts.unacknowledged == 1
        assert counts.critical_unacknowledged == 0
        assert not alert_engine.has_critical_unacknowledged()

    def test_supplier_performance_worst_first(self, alert_engine, make_supplier):
        good = make_supplier(total_deliveries=10, late_deliveries=0)
        bad = make_supplier(total_deliveries=10, late_deliveries=3)

        performance = alert_engine.supplier_performance()
        assert [p.supplier_id for p in performance] == [bad.id, good.id]
        assert performance[0].late_delivery_rate == pytest.approx(0.3)


class TestGradeForDelayRate:
    @pytest.mark.parametrize(
        "rate, grade",
        [(0.0, SupplierGrade.A), (0.10, SupplierGrade.A), (0.11, SupplierGrade.B), (0.20, SupplierGrade.B), (0.21, SupplierGrade.C)],
    )
    def test_boundaries(self, rate, grade):
        assert grade_for_delay_rate(rate) == grade
