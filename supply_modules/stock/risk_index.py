"""
Plant-wide risk index.

Folds per-material risk states into one 0-100 score:

    value  = clamp(0, 100, w_blocking * #BLOCKING
                           + w_out_of_stock * #OUT_OF_STOCK
                           + w_below_safety * #BELOW_SAFETY)
    status = HEALTHY if value <= healthy_max
             WATCH   if value <= watch_max
             CRITICAL otherwise

``compute_index`` is pure; ``RiskScoreAggregator`` wires it to the ledger.
TO_ORDER materials are counted in the breakdown but carry no weight.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from supply_config import RiskPolicy, get_active_policy
from supply_kernel.logging_config import get_logger
from supply_modules.stock.ledger import StockLedgerEngine
from supply_modules.stock.models import RiskState

logger = get_logger("modules.stock.risk_index")


class RiskIndexStatus(str, Enum):
    HEALTHY = "HEALTHY"
    WATCH = "WATCH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class RiskIndex:
    value: int
    status: RiskIndexStatus
    breakdown: dict[RiskState, int] = field(default_factory=dict)

    @property
    def material_count(self) -> int:
        return sum(self.breakdown.values())


def compute_index(
    states: Iterable[RiskState],
    policy: RiskPolicy | None = None,
) -> RiskIndex:
    """Fold material states into a ``RiskIndex``; empty input is 0 / HEALTHY."""
    policy = policy or get_active_policy().risk
    counts = Counter(RiskState(s) for s in states)
    breakdown = {state: counts.get(state, 0) for state in RiskState}

    raw = (
        policy.weight_blocking * breakdown[RiskState.BLOCKING]
        + policy.weight_out_of_stock * breakdown[RiskState.OUT_OF_STOCK]
        + policy.weight_below_safety * breakdown[RiskState.BELOW_SAFETY]
    )
    value = max(0, min(100, raw))

    if value <= policy.healthy_max:
        status = RiskIndexStatus.HEALTHY
    elif value <= policy.watch_max:
        status = RiskIndexStatus.WATCH
    else:
        status = RiskIndexStatus.CRITICAL

    return RiskIndex(value=value, status=status, breakdown=breakdown)


class RiskScoreAggregator:
    """Computes the current index over every active stock-tracked material."""

    def __init__(self, ledger: StockLedgerEngine, policy: RiskPolicy | None = None):
        self._ledger = ledger
        self._policy = policy or get_active_policy().risk

    def current_index(self) -> RiskIndex:
        snapshots = self._ledger.material_snapshots()
        index = compute_index((s.state for s in snapshots), self._policy)
        logger.debug(
            "risk_index_computed",
            extra={
                "value": index.value,
                "status": index.status.value,
                "material_count": index.material_count,
            },
        )
        return index
