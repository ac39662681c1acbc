"""
Tests for ProductionGate.

Validates:
- Required quantity is ceil(quantity_per_batch * batch_count)
- Only mandatory, stock-affecting ingredients can block a run
- A denied run raises one deduplicated PRODUCTION_BLOCKED alert on the recipe
- Input validation (batch count, unknown recipe)
"""

from uuid import uuid4

import pytest

from supply_kernel.exceptions import NotFoundError, ValidationError
from supply_modules.alerts.models import AlertEntityType, AlertSeverity, AlertType


class TestCanStart:
    def test_sufficient_stock_admits(self, production_gate, alert_engine, make_material, make_recipe, add_stock):
        flour = make_material()
        add_stock(flour, 10)
        recipe = make_recipe([(flour, 2.5)])

        check = production_gate.can_start(recipe.id, batch_count=4)

        assert check.can_start
        assert check.blockers == ()
        assert check.alert_id is None
        assert alert_engine.active_alerts() == []

    def test_required_is_rounded_up(self, production_gate, make_material, make_recipe, add_stock):
        yeast = make_material()
        add_stock(yeast, 1)
        recipe = make_recipe([(yeast, 0.3)])

        check = production_gate.can_start(recipe.id, batch_count=4)

        (blocker,) = check.blockers
        assert blocker.required == 2.0
        assert blocker.available == 1.0
        assert blocker.shortage == 1.0

    def test_optional_and_non_stock_items_never_block(self, production_gate, make_material, make_recipe):
        garnish = make_material()
        water = make_material(is_stock_tracked=False)
        recipe = make_recipe([(garnish, 1, False), (water, 5, True, False)])

        assert production_gate.can_start(recipe.id, batch_count=1).can_start

    def test_blocked_run_raises_alert(self, production_gate, alert_engine, make_material, make_recipe, add_stock):
        flour = make_material(code="MP-FLOUR")
        sugar = make_material(code="MP-SUGAR")
        add_stock(flour, 100)
        recipe = make_recipe([(flour, 10), (sugar, 2)], name="Brioche")

        check = production_gate.can_start(recipe.id, batch_count=3)

        assert not check.can_start
        assert [b.material_code for b in check.blockers] == ["MP-SUGAR"]
        (alert,) = alert_engine.active_alerts()
        assert alert.id == check.alert_id
        assert alert.alert_type == AlertType.PRODUCTION_BLOCKED
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.entity_type == AlertEntityType.RECIPE
        assert alert.entity_id == recipe.id
        assert alert.metadata["batch_count"] == 3
        assert alert.metadata["shortages"][0]["shortage"] == 6.0

    def test_repeated_denial_reuses_alert(self, production_gate, alert_engine, make_material, make_recipe):
        salt = make_material()
        recipe = make_recipe([(salt, 1)])

        first = production_gate.can_start(recipe.id, batch_count=1)
        second = production_gate.can_start(recipe.id, batch_count=2)

        assert first.alert_id == second.alert_id
        assert len(alert_engine.active_alerts()) == 1

    def test_negative_stock_blocks(self, production_gate, make_material, make_recipe, add_stock):
        butter = make_material()
        add_stock(butter, -4)
        recipe = make_recipe([(butter, 1)])

        (blocker,) = production_gate.can_start(recipe.id, batch_count=1).blockers
        assert blocker.available == -4.0
        assert blocker.shortage == 5.0

    @pytest.mark.parametrize("batch_count", [0, -2])
    def test_batch_count_must_be_positive(self, production_gate, make_material, make_recipe, batch_count):
        recipe = make_recipe([(make_material(), 1)])
        with pytest.raises(ValidationError):
            production_gate.can_start(recipe.id, batch_count=batch_count)

    def test_unknown_recipe(self, production_gate):
        with pytest.raises(NotFoundError):
            production_gate.can_start(uuid4(), batch_count=1)
