"""
Stock risk classification -- pure functions.

Responsibility:
    Classifies a material's stock health, derives its effective criticality
    from recipe usage and computes coverage days.  No clock, no session, no
    global state: identical inputs always give identical output, so the
    ledger engine, the advisor and the alert scan all agree.

Invariants enforced:
    - Strict priority of the classification rules; a stock exactly on a
      threshold falls into the more severe band.
    - Negative stock is classified exactly like zero.
    - Effective criticality is never lower than the manual value.
"""

import math

from supply_modules.catalog.models import Criticality
from supply_modules.stock.models import RiskState

DEFAULT_ORDER_THRESHOLD_MULTIPLIER = 1.5


def effective_thresholds(
    min_stock: float,
    safety_threshold: float | None,
    order_threshold: float | None,
    order_threshold_multiplier: float = DEFAULT_ORDER_THRESHOLD_MULTIPLIER,
) -> tuple[float, float]:
    """
    Return ``(effective_safety, effective_order)`` with configured fallbacks.

    The fallback order threshold rounds half up (7.5 -> 8, 4.5 -> 5).
    """
    eff_safety = safety_threshold if safety_threshold is not None else min_stock
    eff_order = (
        order_threshold
        if order_threshold is not None
        else math.floor(min_stock * order_threshold_multiplier + 0.5)
    )
    return eff_safety, eff_order


def compute_risk_state(
    stock: float,
    min_stock: float,
    safety_threshold: float | None,
    order_threshold: float | None,
    criticality: Criticality,
    used_in_active_recipe: bool,
    order_threshold_multiplier: float = DEFAULT_ORDER_THRESHOLD_MULTIPLIER,
) -> RiskState:
    """
    Classify stock health.

    Rules, first match wins:
        1. stock <= 0: BLOCKING if used in an active recipe or criticality
           is BLOCKING, else OUT_OF_STOCK.
        2. stock <= effective order threshold: BLOCKING if criticality is
           BLOCKING and stock < effective safety, else TO_ORDER.
        3. stock <= effective safety: BELOW_SAFETY.
        4. HEALTHY.
    """
    eff_safety, eff_order = effective_thresholds(
        min_stock, safety_threshold, order_threshold, order_threshold_multiplier
    )

    if stock <= 0:
        if used_in_active_recipe or criticality == Criticality.BLOCKING:
            return RiskState.BLOCKING
        return RiskState.OUT_OF_STOCK

    if stock <= eff_order:
        if criticality == Criticality.BLOCKING and stock < eff_safety:
            return RiskState.BLOCKING
        return RiskState.TO_ORDER

    if stock <= eff_safety:
        return RiskState.BELOW_SAFETY

    return RiskState.HEALTHY


def usage_derived_criticality(active_recipe_usage_count: int) -> Criticality:
    if active_recipe_usage_count >= 3:
        return Criticality.BLOCKING
    if active_recipe_usage_count == 2:
        return Criticality.HIGH
    if active_recipe_usage_count == 1:
        return Criticality.MEDIUM
    return Criticality.LOW


def compute_effective_criticality(
    manual: Criticality,
    active_recipe_usage_count: int,
) -> Criticality:
    """max(manual, usage-derived); recipe usage only ever raises criticality."""
    return max(manual, usage_derived_criticality(active_recipe_usage_count))


def compute_coverage_days(
    stock: float,
    average_daily_consumption: float | None,
) -> float | None:
    """Days of stock left at the average burn rate; None means infinite."""
    if average_daily_consumption is None or average_daily_consumption <= 0:
        return None
    return stock / average_daily_consumption
