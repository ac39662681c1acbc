"""
Tests for the pure stock risk classification.

Validates:
- Rule priority and threshold boundaries (a stock exactly on a threshold
  falls into the more severe band)
- Fallback thresholds when safety / order thresholds are unset
- Negative stock is treated like zero
- Effective criticality from active recipe usage
- Coverage days
"""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from supply_modules.catalog.models import Criticality
from supply_modules.stock.models import RiskState
from supply_modules.stock.risk import (
    compute_coverage_days,
    compute_effective_criticality,
    compute_risk_state,
    effective_thresholds,
)


def _state(stock, criticality=Criticality.MEDIUM, used=False, min_stock=10.0, safety=None, order=None):
    return compute_risk_state(stock, min_stock, safety, order, criticality, used)


# =============================================================================
# Thresholds
# =============================================================================


class TestEffectiveThresholds:
    def test_explicit_values_win(self):
        assert effective_thresholds(10, 12, 20) == (12, 20)

    def test_fallbacks(self):
        assert effective_thresholds(10, None, None) == (10, 15)

    @pytest.mark.parametrize("min_stock, expected", [(5, 8), (3, 5), (0, 0), (7, 11)])
    def test_fallback_order_rounds_half_up(self, min_stock, expected):
        _, order = effective_thresholds(min_stock, None, None)
        assert order == expected

    def test_custom_multiplier(self):
        assert effective_thresholds(10, None, None, order_threshold_multiplier=2.0) == (10, 20)


# =============================================================================
# Classification
# =============================================================================


class TestComputeRiskState:
    def test_zero_stock_unused_is_out_of_stock(self):
        assert _state(0) == RiskState.OUT_OF_STOCK

    def test_zero_stock_used_in_active_recipe_is_blocking(self):
        assert _state(0, used=True) == RiskState.BLOCKING

    def test_zero_stock_blocking_criticality_is_blocking(self):
        assert _state(0, criticality=Criticality.BLOCKING) == RiskState.BLOCKING

    def test_negative_stock_behaves_like_zero(self):
        assert _state(-4) == _state(0)
        assert _state(-4, used=True) == _state(0, used=True)

    def test_on_order_threshold_is_to_order(self):
        # min 10 -> order 15
        assert _state(15) == RiskState.TO_ORDER

    def test_just_above_order_threshold_is_healthy(self):
        assert _state(15.01) == RiskState.HEALTHY

    def test_below_safety_with_blocking_criticality_is_blocking(self):
        assert _state(9, criticality=Criticality.BLOCKING) == RiskState.BLOCKING

    def test_on_safety_with_blocking_criticality_is_to_order(self):
        assert _state(10, criticality=Criticality.BLOCKING) == RiskState.TO_ORDER

    def test_below_safety_without_blocking_criticality_is_to_order(self):
        assert _state(9, criticality=Criticality.HIGH) == RiskState.TO_ORDER

    def test_below_safety_band_above_order_threshold(self):
        # safety 20 above the fallback order threshold 15
        assert _state(18, safety=20) == RiskState.BELOW_SAFETY
        assert _state(20, safety=20) == RiskState.BELOW_SAFETY
        assert _state(21, safety=20) == RiskState.HEALTHY

    def test_explicit_thresholds(self):
        assert _state(25, safety=20, order=30) == RiskState.TO_ORDER
        assert _state(31, safety=20, order=30) == RiskState.HEALTHY

    @given(
        stock=st.floats(min_value=-1000, max_value=1000, allow_nan=False),
        min_stock=st.floats(min_value=0, max_value=500, allow_nan=False),
        criticality=st.sampled_from(list(Criticality)),
        used=st.booleans(),
    )
    def test_deterministic(self, stock, min_stock, criticality, used):
        first = compute_risk_state(stock, min_stock, None, None, criticality, used)
        second = compute_risk_state(stock, min_stock, None, None, criticality, used)
        assert first == second

    @given(
        stock=st.floats(min_value=0.01, max_value=1000, allow_nan=False),
        extra=st.floats(min_value=0, max_value=1000, allow_nan=False),
        min_stock=st.floats(min_value=0, max_value=500, allow_nan=False),
        criticality=st.sampled_from(list(Criticality)),
    )
    def test_more_stock_never_more_severe(self, stock, extra, min_stock, criticality):
        lower = compute_risk_state(stock, min_stock, None, None, criticality, False)
        higher = compute_risk_state(stock + extra, min_stock, None, None, criticality, False)
        assert higher.severity <= lower.severity


# =============================================================================
# Criticality and coverage
# =============================================================================


class TestEffectiveCriticality:
    @pytest.mark.parametrize(
        "usage, expected",
        [
            (0, Criticality.LOW),
            (1, Criticality.MEDIUM),
            (2, Criticality.HIGH),
            (3, Criticality.BLOCKING),
            (7, Criticality.BLOCKING),
        ],
    )
    def test_usage_derived(self, usage, expected):
        assert compute_effective_criticality(Criticality.LOW, usage) == expected

    def test_never_below_manual(self):
        assert compute_effective_criticality(Criticality.HIGH, 1) == Criticality.HIGH
        assert compute_effective_criticality(Criticality.BLOCKING, 0) == Criticality.BLOCKING


class TestCoverageDays:
    def test_basic(self):
        assert compute_coverage_days(30, 2) == 15

    @pytest.mark.parametrize("consumption", [None, 0, -1])
    def test_no_consumption_is_infinite(self, consumption):
        assert compute_coverage_days(30, consumption) is None

    def test_zero_stock(self):
        assert compute_coverage_days(0, 5) == 0

    def test_fractional(self):
        assert math.isclose(compute_coverage_days(10, 3), 10 / 3)
