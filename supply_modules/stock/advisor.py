"""
RequisitionAdvisor -- reorder suggestions derived from the ledger.

Responsibility:
    For every active stock-tracked material that is not HEALTHY, proposes a
    quantity to order, a priority and machine-readable reasons.  The output
    feeds the requisition screen; nothing is persisted here.

Architecture position:
    Modules > Stock.  Reads ``StockLedgerEngine.material_snapshots()`` only.

Quantity rule (first applicable):
    1. order threshold set   -> max(order_threshold - stock, 0)
    2. consumption > 0       -> max(ceil(consumption * (lead + safety_days)) - stock, 0)
    3. otherwise             -> max(fallback_multiplier * min_stock - stock, 0)

Priority rule:
    CRITICAL  state BLOCKING or OUT_OF_STOCK, effective criticality BLOCKING,
              or coverage below lead time
    HIGH      state TO_ORDER or effective criticality HIGH
    NORMAL    otherwise
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from supply_config import StockPolicy, get_active_policy
from supply_kernel.logging_config import get_logger
from supply_modules.catalog.models import Criticality
from supply_modules.stock.ledger import StockLedgerEngine
from supply_modules.stock.models import MaterialRiskSnapshot, RiskState, SupplierRef

logger = get_logger("modules.stock.advisor")


class SuggestionPriority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    NORMAL = "NORMAL"

    @property
    def rank(self) -> int:
        return {"CRITICAL": 0, "HIGH": 1, "NORMAL": 2}[self.value]


class SuggestionReason(str, Enum):
    """Structured reason codes; rendering is the presentation layer's job."""

    STATE_BLOCKING = "STATE_BLOCKING"
    STATE_OUT_OF_STOCK = "STATE_OUT_OF_STOCK"
    STATE_TO_ORDER = "STATE_TO_ORDER"
    STATE_BELOW_SAFETY = "STATE_BELOW_SAFETY"
    CRITICALITY_BLOCKING = "CRITICALITY_BLOCKING"
    CRITICALITY_HIGH = "CRITICALITY_HIGH"
    COVERAGE_BELOW_LEAD_TIME = "COVERAGE_BELOW_LEAD_TIME"
    USED_IN_ACTIVE_RECIPES = "USED_IN_ACTIVE_RECIPES"


_STATE_REASONS = {
    RiskState.BLOCKING: SuggestionReason.STATE_BLOCKING,
    RiskState.OUT_OF_STOCK: SuggestionReason.STATE_OUT_OF_STOCK,
    RiskState.TO_ORDER: SuggestionReason.STATE_TO_ORDER,
    RiskState.BELOW_SAFETY: SuggestionReason.STATE_BELOW_SAFETY,
}


@dataclass(frozen=True)
class RequisitionSuggestion:
    material_id: UUID
    material_code: str
    material_name: str
    unit: str
    current_stock: float
    recommended_quantity: float
    priority: SuggestionPriority
    state: RiskState
    effective_criticality: Criticality
    coverage_days: float | None
    lead_time_days: int
    reasons: tuple[SuggestionReason, ...] = field(default_factory=tuple)
    impacted_recipes: tuple[str, ...] = field(default_factory=tuple)
    suggested_supplier: SupplierRef | None = None


def recommended_quantity(snapshot: MaterialRiskSnapshot, policy: StockPolicy) -> float:
    stock = snapshot.current_stock
    if snapshot.order_threshold is not None:
        return max(snapshot.order_threshold - stock, 0.0)
    consumption = snapshot.average_daily_consumption
    if consumption is not None and consumption > 0:
        horizon = snapshot.lead_time_days + policy.suggestion_safety_days
        return float(max(math.ceil(consumption * horizon) - stock, 0))
    return max(policy.fallback_min_stock_multiplier * snapshot.min_stock - stock, 0.0)


def suggestion_priority(snapshot: MaterialRiskSnapshot) -> SuggestionPriority:
    if (
        snapshot.state in (RiskState.BLOCKING, RiskState.OUT_OF_STOCK)
        or snapshot.effective_criticality == Criticality.BLOCKING
        or snapshot.coverage_below_lead_time
    ):
        return SuggestionPriority.CRITICAL
    if snapshot.state == RiskState.TO_ORDER or snapshot.effective_criticality == Criticality.HIGH:
        return SuggestionPriority.HIGH
    return SuggestionPriority.NORMAL


def suggestion_reasons(snapshot: MaterialRiskSnapshot) -> tuple[SuggestionReason, ...]:
    reasons = [_STATE_REASONS[snapshot.state]]
    if snapshot.effective_criticality == Criticality.BLOCKING:
        reasons.append(SuggestionReason.CRITICALITY_BLOCKING)
    elif snapshot.effective_criticality == Criticality.HIGH:
        reasons.append(SuggestionReason.CRITICALITY_HIGH)
    if snapshot.coverage_below_lead_time:
        reasons.append(SuggestionReason.COVERAGE_BELOW_LEAD_TIME)
    if snapshot.active_recipe_usage > 0:
        reasons.append(SuggestionReason.USED_IN_ACTIVE_RECIPES)
    return tuple(reasons)


class RequisitionAdvisor:
    """Builds the sorted suggestion list; read-only."""

    def __init__(self, ledger: StockLedgerEngine, policy: StockPolicy | None = None):
        self._ledger = ledger
        self._policy = policy or get_active_policy().stock

    def suggestions(self) -> list[RequisitionSuggestion]:
        result = [
            RequisitionSuggestion(
                material_id=snap.material_id,
                material_code=snap.code,
                material_name=snap.name,
                unit=snap.unit,
                current_stock=snap.current_stock,
                recommended_quantity=recommended_quantity(snap, self._policy),
                priority=suggestion_priority(snap),
                state=snap.state,
                effective_criticality=snap.effective_criticality,
                coverage_days=snap.coverage_days,
                lead_time_days=snap.lead_time_days,
                reasons=suggestion_reasons(snap),
                impacted_recipes=snap.impacted_recipes,
                suggested_supplier=snap.primary_supplier,
            )
            for snap in self._ledger.material_snapshots()
            if snap.state != RiskState.HEALTHY
        ]
        # Infinite coverage sorts last within a priority
        result.sort(
            key=lambda s: (
                s.priority.rank,
                s.coverage_days if s.coverage_days is not None else math.inf,
                s.material_code,
            )
        )
        logger.debug("requisition_suggestions_built", extra={"count": len(result)})
        return result
