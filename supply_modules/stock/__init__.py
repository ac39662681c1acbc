"""
Stock module: the movement ledger, risk classification, the plant-wide risk
index and reorder suggestions.
"""

from supply_modules.stock.advisor import (
    RequisitionAdvisor,
    RequisitionSuggestion,
    SuggestionPriority,
    SuggestionReason,
)
from supply_modules.stock.ledger import StockLedgerEngine
from supply_modules.stock.models import (
    MaterialRiskSnapshot,
    MetricsBatchResult,
    MovementDirection,
    MovementOrigin,
    RiskState,
    StockMovementRecord,
    SupplierRef,
)
from supply_modules.stock.orm import LotModel, StockMovementModel
from supply_modules.stock.risk import (
    compute_coverage_days,
    compute_effective_criticality,
    compute_risk_state,
    effective_thresholds,
)
from supply_modules.stock.risk_index import (
    RiskIndex,
    RiskIndexStatus,
    RiskScoreAggregator,
    compute_index,
)

__all__ = [
    "LotModel",
    "MaterialRiskSnapshot",
    "MetricsBatchResult",
    "MovementDirection",
    "MovementOrigin",
    "RequisitionAdvisor",
    "RequisitionSuggestion",
    "RiskIndex",
    "RiskIndexStatus",
    "RiskScoreAggregator",
    "RiskState",
    "StockLedgerEngine",
    "StockMovementModel",
    "StockMovementRecord",
    "SuggestionPriority",
    "SuggestionReason",
    "SupplierRef",
    "compute_coverage_days",
    "compute_effective_criticality",
    "compute_index",
    "compute_risk_state",
    "effective_thresholds",
]
