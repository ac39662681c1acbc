"""
Stock Domain Models.

Ledger vocabulary (movement direction and origin), the risk state scale and
the read DTOs exposed to the presentation layer.  Quantities are floats in
the material's physical unit.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from supply_modules.catalog.models import Criticality, SupplierGrade


class MovementDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"


class MovementOrigin(str, Enum):
    """What produced a ledger movement."""

    RECEPTION = "RECEPTION"
    PRODUCTION = "PRODUCTION"
    ADJUSTMENT = "ADJUSTMENT"
    RETURN = "RETURN"


class RiskState(str, Enum):
    """Per-material stock health, from healthiest to most severe."""

    HEALTHY = "HEALTHY"
    BELOW_SAFETY = "BELOW_SAFETY"
    TO_ORDER = "TO_ORDER"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    BLOCKING = "BLOCKING"

    @property
    def severity(self) -> int:
        return _STATE_SEVERITY[self]


_STATE_SEVERITY = {
    RiskState.HEALTHY: 0,
    RiskState.BELOW_SAFETY: 1,
    RiskState.TO_ORDER: 2,
    RiskState.OUT_OF_STOCK: 3,
    RiskState.BLOCKING: 4,
}


@dataclass(frozen=True)
class StockMovementRecord:
    id: UUID
    material_id: UUID
    direction: MovementDirection
    quantity: float
    origin: MovementOrigin
    occurred_at: datetime
    reference_type: str | None = None
    reference_id: UUID | None = None
    lot_id: UUID | None = None
    is_deleted: bool = False

    @property
    def signed_quantity(self) -> float:
        return self.quantity if self.direction == MovementDirection.IN else -self.quantity


@dataclass(frozen=True)
class SupplierRef:
    id: UUID
    name: str
    grade: SupplierGrade | None = None


@dataclass(frozen=True)
class MaterialRiskSnapshot:
    """
    Per-material risk read model.

    ``coverage_days`` is None when consumption is zero or unknown, meaning
    infinite coverage.
    """

    material_id: UUID
    code: str
    name: str
    unit: str
    current_stock: float
    min_stock: float
    safety_threshold: float | None
    order_threshold: float | None
    lead_time_days: int
    average_daily_consumption: float | None
    coverage_days: float | None
    manual_criticality: Criticality
    effective_criticality: Criticality
    state: RiskState
    active_recipe_usage: int = 0
    mandatory_in_active_recipe: bool = False
    impacted_recipes: tuple[str, ...] = field(default_factory=tuple)
    primary_supplier: SupplierRef | None = None

    @property
    def coverage_below_lead_time(self) -> bool:
        return self.coverage_days is not None and self.coverage_days < self.lead_time_days


@dataclass(frozen=True)
class MetricsBatchResult:
    updated: int
    window_days: int
    computed_at: datetime
