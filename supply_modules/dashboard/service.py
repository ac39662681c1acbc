"""
Supply dashboard read model.

One call assembling what the procurement overview screen shows: the risk
index, the state breakdown, the most critical materials, alert counts and
purchase-order health.  Read-only; never commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from supply_config import SupplyPolicy, get_active_policy
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.logging_config import get_logger
from supply_modules.alerts.models import AlertCounts
from supply_modules.alerts.service import AlertEngine
from supply_modules.purchasing.models import LateOrderStats
from supply_modules.purchasing.service import PurchaseOrderLifecycle
from supply_modules.stock.ledger import StockLedgerEngine
from supply_modules.stock.models import MaterialRiskSnapshot, RiskState
from supply_modules.stock.risk_index import RiskIndex, compute_index

logger = get_logger("modules.dashboard.service")

TOP_CRITICAL_LIMIT = 5


@dataclass(frozen=True)
class DashboardSnapshot:
    generated_at: datetime
    risk_index: RiskIndex
    state_counts: dict[RiskState, int]
    top_critical: tuple[MaterialRiskSnapshot, ...]
    alert_counts: AlertCounts
    open_purchase_orders: int
    late_orders: LateOrderStats = field(default_factory=LateOrderStats)


def _criticality_key(snapshot: MaterialRiskSnapshot):
    coverage = snapshot.coverage_days if snapshot.coverage_days is not None else float("inf")
    return (
        -snapshot.state.severity,
        -int(snapshot.effective_criticality),
        coverage,
        snapshot.code,
    )


class SupplyDashboard:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SupplyPolicy | None = None,
    ):
        self._clock = clock or SystemClock()
        self._policy = policy or get_active_policy()
        self._ledger = StockLedgerEngine(session, self._clock, self._policy)
        self._alerts = AlertEngine(
            session, self._clock, self._policy, ledger=self._ledger, auto_commit=False
        )
        self._orders = PurchaseOrderLifecycle(
            session, self._clock, self._policy, ledger=self._ledger, auto_commit=False
        )

    def snapshot(self) -> DashboardSnapshot:
        snapshots = self._ledger.material_snapshots()
        index = compute_index((s.state for s in snapshots), self._policy.risk)
        at_risk = [s for s in snapshots if s.state != RiskState.HEALTHY]
        top = tuple(sorted(at_risk, key=_criticality_key)[:TOP_CRITICAL_LIMIT])

        result = DashboardSnapshot(
            generated_at=self._clock.now(),
            risk_index=index,
            state_counts=dict(index.breakdown),
            top_critical=top,
            alert_counts=self._alerts.alert_counts(),
            open_purchase_orders=self._orders.count_open_orders(),
            late_orders=self._orders.late_order_stats(),
        )
        logger.debug(
            "dashboard_snapshot_built",
            extra={
                "risk_index": index.value,
                "material_count": index.material_count,
                "open_purchase_orders": result.open_purchase_orders,
            },
        )
        return result
