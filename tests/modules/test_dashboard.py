"""
Tests for SupplyDashboard.

Validates:
- Risk index and state breakdown over the tracked catalog
- Top critical materials ordered by state severity, criticality, coverage
- Alert counts and purchase-order health are included
"""

import pytest

from supply_modules.alerts.models import AlertEntityType, AlertSeverity, AlertType
from supply_modules.catalog.models import Criticality
from supply_modules.dashboard.service import TOP_CRITICAL_LIMIT, SupplyDashboard
from supply_modules.purchasing.models import OrderLineInput
from supply_modules.stock.models import RiskState
from supply_modules.stock.risk_index import RiskIndexStatus


@pytest.fixture
def dashboard(session, deterministic_clock, policy):
    return SupplyDashboard(session, deterministic_clock, policy)


class TestSnapshot:
    def test_empty_catalog(self, dashboard, deterministic_clock):
        snapshot = dashboard.snapshot()
        assert snapshot.generated_at == deterministic_clock.now()
        assert snapshot.risk_index.value == 0
        assert snapshot.top_critical == ()
        assert snapshot.open_purchase_orders == 0
        assert snapshot.alert_counts.total == 0

    def test_catalog_overview(
        self, dashboard, alert_engine, lifecycle, make_material, make_recipe, make_supplier, add_stock, test_actor_id
    ):
        blocked = make_material(code="MP-BLK")
        make_recipe([(blocked, 1)])
        make_material(code="MP-OUT")
        to_order = make_material(code="MP-ORD")
        healthy = make_material(code="MP-OK")
        add_stock(to_order, 12)
        add_stock(healthy, 100)

        alert_engine.raise_alert(
            AlertType.MATERIAL_CRITICAL,
            AlertSeverity.CRITICAL,
            AlertEntityType.MATERIAL,
            blocked.id,
            "MP-BLK out of stock",
        )
        supplier = make_supplier()
        lifecycle.create(supplier.id, [OrderLineInput(to_order.id, 10)], test_actor_id)

        snapshot = dashboard.snapshot()

        assert snapshot.risk_index.value == 50
        assert snapshot.risk_index.status == RiskIndexStatus.WATCH
        assert snapshot.state_counts[RiskState.BLOCKING] == 1
        assert snapshot.state_counts[RiskState.HEALTHY] == 1
        assert [s.code for s in snapshot.top_critical] == ["MP-BLK", "MP-OUT", "MP-ORD"]
        assert snapshot.alert_counts.critical_unacknowledged == 1
        assert snapshot.open_purchase_orders == 1
        assert snapshot.late_orders.total_late == 0

    def test_top_critical_is_capped_and_ranked(self, dashboard, make_material):
        for i in range(TOP_CRITICAL_LIMIT + 2):
            make_material(code=f"MP-{i:02d}")
        urgent = make_material(code="MP-ZZ", criticality=Criticality.BLOCKING)

        top = dashboard.snapshot().top_critical

        assert len(top) == TOP_CRITICAL_LIMIT
        assert top[0].material_id == urgent.id
        assert [s.code for s in top[1:]] == ["MP-00", "MP-01", "MP-02", "MP-03"]
