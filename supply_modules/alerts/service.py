"""
AlertEngine (``supply_modules.alerts.service``).

Responsibility
--------------
Raises, deduplicates, acknowledges and postpones supply alerts, and runs
the periodic scan that turns ledger and supplier state into alerts.

Architecture position
---------------------
**Modules layer**.  Reads through ``StockLedgerEngine``; invoked by
``ProductionGate`` (sharing its transaction) and by the scheduled-jobs
script.

Invariants enforced
-------------------
* At most one active alert per ``(alert_type, entity_type, entity_id)``.
  The pre-insert lookup handles the common case; the partial unique index
  closes the race, and the losing insert returns the winner's row.
* A material with ledger stock <= 0 can never be postponed.
* At most ``max_postponements`` postponements per material in the
  trailing window, counted from the audit log.

Failure modes
-------------
* ``InvalidPostponeDurationError`` / ``ReasonTooShortError`` -- bad input.
* ``NotFoundError`` -- unknown alert or material.
* ``AlertAlreadyAcknowledgedError`` / ``StockoutPostponeError`` -- state.
* ``RateLimitError`` -- postponement cap reached.

Audit relevance
---------------
Acknowledgements and postponements are audited in the same transaction.
The scan's own audit record is best-effort: a failure is logged and the
scan still commits its alerts.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from supply_config import SupplyPolicy, get_active_policy
from supply_kernel.db.base import SYSTEM_ACTOR_ID
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.exceptions import (
    AlertAlreadyAcknowledgedError,
    InvalidPostponeDurationError,
    NotFoundError,
    RateLimitError,
    ReasonTooShortError,
    StockoutPostponeError,
)
from supply_kernel.logging_config import LogContext, get_logger
from supply_kernel.models.audit_event import AuditAction
from supply_kernel.services.auditor_service import AuditorService
from supply_modules.alerts.models import (
    AlertCounts,
    AlertEntityType,
    AlertInfo,
    AlertSeverity,
    AlertType,
    PostponeResult,
    ScanResult,
    SupplierPerformance,
)
from supply_modules.alerts.orm import AlertModel
from supply_modules.catalog.models import Criticality, SupplierGrade
from supply_modules.catalog.orm import MaterialModel, SupplierModel
from supply_modules.stock.ledger import StockLedgerEngine

logger = get_logger("modules.alerts.service")


def grade_for_delay_rate(rate: float, grade_a_max: float = 0.10, grade_b_max: float = 0.20) -> SupplierGrade:
    if rate <= grade_a_max:
        return SupplierGrade.A
    if rate <= grade_b_max:
        return SupplierGrade.B
    return SupplierGrade.C


class AlertEngine:
    """
    Alert lifecycle and periodic scan.

    Contract
    --------
    * ``raise_alert`` never fails on a duplicate: it returns the existing
      active alert instead.
    * Query methods return frozen ``AlertInfo`` DTOs, most severe first.

    Guarantees
    ----------
    * With ``auto_commit=True`` each public mutating method commits on
      success and rolls back on any exception.  With ``auto_commit=False``
      the caller owns the transaction (``ProductionGate`` does this).
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT deliver notifications; the presentation layer polls.
    * Does NOT schedule itself; ``scan()`` is triggered externally.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SupplyPolicy | None = None,
        ledger: StockLedgerEngine | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or get_active_policy()
        self._ledger = ledger or StockLedgerEngine(session, self._clock, self._policy)
        self._auditor = AuditorService(session, self._clock)
        self._auto_commit = auto_commit

    def _commit(self) -> None:
        if self._auto_commit:
            self._session.commit()

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    # =========================================================================
    # Raise / dedup
    # =========================================================================

    def _find_active(
        self,
        alert_type: AlertType,
        entity_type: AlertEntityType,
        entity_id: UUID,
    ) -> AlertModel | None:
        return self._session.execute(
            select(AlertModel).where(
                AlertModel.alert_type == alert_type.value,
                AlertModel.entity_type == entity_type.value,
                AlertModel.entity_id == entity_id,
                AlertModel.acknowledged_at.is_(None),
            )
        ).scalar_one_or_none()

    def _raise(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        entity_type: AlertEntityType,
        entity_id: UUID,
        message: str,
        metadata: dict[str, Any] | None,
        actor_id: UUID,
    ) -> tuple[AlertModel, bool]:
        """Return ``(alert, created)``; flushes but never commits."""
        existing = self._find_active(alert_type, entity_type, entity_id)
        if existing is not None:
            logger.info(
                "alert_deduplicated",
                extra={
                    "alert_id": str(existing.id),
                    "alert_type": alert_type.value,
                    "entity_type": entity_type.value,
                    "entity_id": str(entity_id),
                },
            )
            return existing, False

        alert = AlertModel(
            alert_type=alert_type.value,
            severity=severity.value,
            entity_type=entity_type.value,
            entity_id=entity_id,
            message=message,
            alert_metadata={"triggered_at": self._clock.now().isoformat(), **(metadata or {})},
            created_by_id=actor_id,
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(alert)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            # A concurrent writer inserted the same active alert first
            savepoint.rollback()
            existing = self._find_active(alert_type, entity_type, entity_id)
            if existing is None:
                raise
            logger.info(
                "alert_deduplicated",
                extra={
                    "alert_id": str(existing.id),
                    "alert_type": alert_type.value,
                    "entity_type": entity_type.value,
                    "entity_id": str(entity_id),
                    "race": True,
                },
            )
            return existing, False

        logger.info(
            "alert_raised",
            extra={
                "alert_id": str(alert.id),
                "alert_type": alert_type.value,
                "severity": severity.value,
                "entity_type": entity_type.value,
                "entity_id": str(entity_id),
            },
        )
        return alert, True

    def raise_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        entity_type: AlertEntityType,
        entity_id: UUID,
        message: str,
        metadata: dict[str, Any] | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> AlertInfo:
        """Existing active alert for the (type, entity) pair, else a new one."""
        try:
            alert, _ = self._raise(
                AlertType(alert_type),
                AlertSeverity(severity),
                AlertEntityType(entity_type),
                entity_id,
                message,
                metadata,
                actor_id,
            )
            self._commit()
            return alert.to_dto()
        except Exception:
            self._rollback()
            raise

    # =========================================================================
    # Acknowledge / postpone
    # =========================================================================

    def acknowledge(self, alert_id: UUID, actor_id: UUID) -> AlertInfo:
        try:
            alert = self._session.get(AlertModel, alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id)
            if alert.acknowledged_at is not None:
                raise AlertAlreadyAcknowledgedError(alert_id, alert.acknowledged_at)

            alert.acknowledged_at = self._clock.now()
            alert.acknowledged_by_id = actor_id
            alert.updated_by_id = actor_id
            self._session.flush()

            self._auditor.record(
                entity_type="Alert",
                entity_id=alert.id,
                action=AuditAction.ALERT_ACKNOWLEDGED,
                actor_id=actor_id,
                payload={
                    "alert_type": alert.alert_type,
                    "severity": alert.severity,
                    "entity_type": alert.entity_type,
                    "entity_id": alert.entity_id,
                },
            )
            self._commit()
            logger.info(
                "alert_acknowledged",
                extra={"alert_id": str(alert_id), "actor_id": str(actor_id)},
            )
            return alert.to_dto()
        except Exception:
            self._rollback()
            raise

    def postpone(
        self,
        material_id: UUID,
        duration: str,
        reason: str,
        actor_id: UUID,
    ) -> PostponeResult:
        """
        Postpone every active alert of a material.

        Input is validated first, then the stockout rule, then the rate
        limit counted from ``ALERT_POSTPONED`` audit events.
        """
        alert_policy = self._policy.alerts
        try:
            with LogContext.bind(material_id=str(material_id), actor_id=str(actor_id)):
                durations = alert_policy.postpone_durations_hours
                if duration not in durations:
                    raise InvalidPostponeDurationError(duration, tuple(durations))

                cleaned_reason = (reason or "").strip()
                if len(cleaned_reason) < alert_policy.postpone_reason_min_length:
                    raise ReasonTooShortError(
                        "reason", alert_policy.postpone_reason_min_length, len(cleaned_reason)
                    )

                material = self._session.get(MaterialModel, material_id)
                if material is None:
                    raise NotFoundError("Material", material_id)

                current_stock = self._ledger.compute_current_stock([material_id])[material_id]
                if current_stock <= 0:
                    logger.warning(
                        "postpone_refused_stockout",
                        extra={"current_stock": current_stock},
                    )
                    raise StockoutPostponeError(material_id, current_stock)

                now = self._clock.now()
                window_start = now - timedelta(days=alert_policy.postpone_window_days)
                recent = self._auditor.count_actions(
                    "Material", material_id, AuditAction.ALERT_POSTPONED, window_start
                )
                if recent >= alert_policy.max_postponements:
                    logger.warning(
                        "postpone_rate_limited",
                        extra={"count": recent, "limit": alert_policy.max_postponements},
                    )
                    raise RateLimitError(
                        material_id,
                        recent,
                        alert_policy.max_postponements,
                        alert_policy.postpone_window_days,
                    )

                postponed_until = now + timedelta(hours=durations[duration])
                postponement = {
                    "postponed_at": now.isoformat(),
                    "postponed_until": postponed_until.isoformat(),
                    "duration": duration,
                    "reason": cleaned_reason,
                    "postponed_by": str(actor_id),
                }

                alerts = self._session.execute(
                    select(AlertModel).where(
                        AlertModel.entity_type == AlertEntityType.MATERIAL.value,
                        AlertModel.entity_id == material_id,
                        AlertModel.acknowledged_at.is_(None),
                    )
                ).scalars().all()
                for alert in alerts:
                    # Reassign so the JSON column is flagged dirty
                    alert.alert_metadata = {**(alert.alert_metadata or {}), "postponement": postponement}
                    alert.updated_by_id = actor_id
                self._session.flush()

                self._auditor.record(
                    entity_type="Material",
                    entity_id=material_id,
                    action=AuditAction.ALERT_POSTPONED,
                    actor_id=actor_id,
                    payload={
                        "material_code": material.code,
                        "current_stock": current_stock,
                        "alert_ids": [a.id for a in alerts],
                        **postponement,
                    },
                )
                self._commit()

                logger.info(
                    "alerts_postponed",
                    extra={
                        "duration": duration,
                        "alerts_updated": len(alerts),
                        "postponements_in_window": recent + 1,
                    },
                )
                return PostponeResult(
                    material_id=material_id,
                    duration=duration,
                    postponed_until=postponed_until,
                    alerts_updated=len(alerts),
                    postponements_in_window=recent + 1,
                )
        except Exception:
            self._rollback()
            raise

    # =========================================================================
    # Scan
    # =========================================================================

    def scan(self) -> ScanResult:
        """
        Periodic scan, safe to repeat: every raise goes through dedup.

        1. MATERIAL_CRITICAL for eligible materials at or below zero.
        2. RUPTURE_IMMINENT when coverage is below lead time.
        3. Supplier regrading, SUPPLIER_DEGRADED on any grade change.
        """
        started_at = self._clock.now()
        scan_id = uuid4()
        alert_policy = self._policy.alerts
        new_alerts = 0
        material_critical = rupture_imminent = supplier_degraded = 0

        try:
            with LogContext.bind(correlation_id=str(scan_id)):
                logger.info("alert_scan_started")
                snapshots = self._ledger.material_snapshots()

                for snap in snapshots:
                    eligible = (
                        snap.manual_criticality == Criticality.BLOCKING
                        or snap.mandatory_in_active_recipe
                    )
                    if eligible and snap.current_stock <= 0:
                        _, created = self._raise(
                            AlertType.MATERIAL_CRITICAL,
                            AlertSeverity.CRITICAL,
                            AlertEntityType.MATERIAL,
                            snap.material_id,
                            f"Critical material {snap.name} ({snap.code}) is out of stock "
                            f"({snap.current_stock:g} {snap.unit}); production is blocked",
                            {
                                "material_code": snap.code,
                                "current_stock": snap.current_stock,
                                "impacted_recipes": list(snap.impacted_recipes),
                            },
                            SYSTEM_ACTOR_ID,
                        )
                        material_critical += 1
                        new_alerts += int(created)

                    if snap.coverage_below_lead_time:
                        _, created = self._raise(
                            AlertType.RUPTURE_IMMINENT,
                            AlertSeverity.WARNING,
                            AlertEntityType.MATERIAL,
                            snap.material_id,
                            f"Stockout imminent for {snap.name} ({snap.code}): "
                            f"{snap.coverage_days:.1f} days of coverage, "
                            f"lead time {snap.lead_time_days} days",
                            {
                                "material_code": snap.code,
                                "coverage_days": snap.coverage_days,
                                "lead_time_days": snap.lead_time_days,
                            },
                            SYSTEM_ACTOR_ID,
                        )
                        rupture_imminent += 1
                        new_alerts += int(created)

                suppliers = self._session.execute(
                    select(SupplierModel).where(SupplierModel.is_active.is_(True))
                ).scalars().all()
                for supplier in suppliers:
                    rate = supplier.late_delivery_rate or 0.0
                    new_grade = grade_for_delay_rate(
                        rate,
                        alert_policy.grade_a_max_delay_rate,
                        alert_policy.grade_b_max_delay_rate,
                    )
                    old_grade = SupplierGrade(supplier.grade) if supplier.grade else None
                    if new_grade == old_grade:
                        continue
                    if old_grade is not None:
                        severity = (
                            AlertSeverity.CRITICAL
                            if rate > alert_policy.critical_delay_rate
                            else AlertSeverity.WARNING
                        )
                        _, created = self._raise(
                            AlertType.SUPPLIER_DEGRADED,
                            severity,
                            AlertEntityType.SUPPLIER,
                            supplier.id,
                            f"Supplier {supplier.name} ({supplier.code}) regraded "
                            f"{old_grade.value} -> {new_grade.value}, "
                            f"late-delivery rate {rate:.1%}",
                            {
                                "supplier_code": supplier.code,
                                "late_delivery_rate": rate,
                                "old_grade": old_grade.value,
                                "new_grade": new_grade.value,
                            },
                            SYSTEM_ACTOR_ID,
                        )
                        supplier_degraded += 1
                        new_alerts += int(created)
                    supplier.grade = new_grade.value
                    supplier.performance_updated_at = started_at
                    supplier.updated_by_id = SYSTEM_ACTOR_ID
                    self._record_best_effort(
                        "Supplier",
                        supplier.id,
                        AuditAction.SUPPLIER_GRADE_CHANGED,
                        {
                            "old_grade": old_grade.value if old_grade else None,
                            "new_grade": new_grade.value,
                            "late_delivery_rate": rate,
                            "scan_id": scan_id,
                        },
                    )
                    logger.info(
                        "supplier_grade_changed",
                        extra={
                            "supplier_id": str(supplier.id),
                            "old_grade": old_grade.value if old_grade else None,
                            "new_grade": new_grade.value,
                        },
                    )
                self._session.flush()

                result = ScanResult(
                    materials_scanned=len(snapshots),
                    suppliers_scanned=len(suppliers),
                    material_critical=material_critical,
                    rupture_imminent=rupture_imminent,
                    supplier_degraded=supplier_degraded,
                    new_alerts=new_alerts,
                    started_at=started_at,
                    completed_at=self._clock.now(),
                )
                self._record_scan_audit(scan_id, result)
                self._commit()

                logger.info(
                    "alert_scan_completed",
                    extra={
                        "material_critical": material_critical,
                        "rupture_imminent": rupture_imminent,
                        "supplier_degraded": supplier_degraded,
                        "new_alerts": new_alerts,
                    },
                )
                return result
        except Exception:
            self._rollback()
            raise

    def _record_scan_audit(self, scan_id: UUID, result: ScanResult) -> None:
        self._record_best_effort(
            "AlertScan",
            scan_id,
            AuditAction.ALERT_SCAN_COMPLETED,
            {
                "materials_scanned": result.materials_scanned,
                "suppliers_scanned": result.suppliers_scanned,
                "material_critical": result.material_critical,
                "rupture_imminent": result.rupture_imminent,
                "supplier_degraded": result.supplier_degraded,
                "new_alerts": result.new_alerts,
            },
        )

    def _record_best_effort(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        payload: dict,
    ) -> None:
        """Scan audits are best-effort: a failed write is logged, the scan still commits."""
        savepoint = self._session.begin_nested()
        try:
            self._auditor.record(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=SYSTEM_ACTOR_ID,
                payload=payload,
            )
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            logger.warning(
                "alert_scan_audit_failed",
                extra={"audit_action": action.value, "entity_id": str(entity_id)},
                exc_info=True,
            )

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def _sorted(alerts: list[AlertModel]) -> list[AlertInfo]:
        dtos = [a.to_dto() for a in alerts]
        dtos.sort(key=lambda a: a.created_at.timestamp() if a.created_at else 0.0, reverse=True)
        dtos.sort(key=lambda a: a.severity.rank)
        return dtos

    def active_alerts(self) -> list[AlertInfo]:
        alerts = self._session.execute(
            select(AlertModel).where(AlertModel.acknowledged_at.is_(None))
        ).scalars().all()
        return self._sorted(list(alerts))

    def critical_unacknowledged(self) -> list[AlertInfo]:
        alerts = self._session.execute(
            select(AlertModel).where(
                AlertModel.acknowledged_at.is_(None),
                AlertModel.severity == AlertSeverity.CRITICAL.value,
            )
        ).scalars().all()
        return self._sorted(list(alerts))

    def has_critical_unacknowledged(self) -> bool:
        return self._session.execute(
            select(AlertModel.id)
            .where(
                AlertModel.acknowledged_at.is_(None),
                AlertModel.severity == AlertSeverity.CRITICAL.value,
            )
            .limit(1)
        ).first() is not None

    def alert_counts(self) -> AlertCounts:
        active = case((AlertModel.acknowledged_at.is_(None), 1), else_=0)
        rows = self._session.execute(
            select(AlertModel.severity, func.count(AlertModel.id), func.sum(active))
            .group_by(AlertModel.severity)
        ).all()
        by_severity = {severity: (int(total), int(unacked or 0)) for severity, total, unacked in rows}

        def total(severity: AlertSeverity) -> int:
            return by_severity.get(severity.value, (0, 0))[0]

        return AlertCounts(
            total=sum(t for t, _ in by_severity.values()),
            critical=total(AlertSeverity.CRITICAL),
            warning=total(AlertSeverity.WARNING),
            info=total(AlertSeverity.INFO),
            unacknowledged=sum(u for _, u in by_severity.values()),
            critical_unacknowledged=by_severity.get(AlertSeverity.CRITICAL.value, (0, 0))[1],
        )

    def supplier_performance(self) -> list[SupplierPerformance]:
        """Active suppliers, worst late-delivery rate first."""
        suppliers = self._session.execute(
            select(SupplierModel)
            .where(SupplierModel.is_active.is_(True))
            .order_by(SupplierModel.late_delivery_rate.desc(), SupplierModel.code)
        ).scalars().all()
        return [
            SupplierPerformance(
                supplier_id=s.id,
                code=s.code,
                name=s.name,
                grade=SupplierGrade(s.grade) if s.grade else None,
                total_deliveries=s.total_deliveries or 0,
                late_deliveries=s.late_deliveries or 0,
                late_delivery_rate=s.late_delivery_rate or 0.0,
            )
            for s in suppliers
        ]
