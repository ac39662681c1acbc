"""
Alerts Domain Models.

Alert vocabulary plus the result DTOs of ``AlertEngine``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from supply_modules.catalog.models import SupplierGrade


class AlertType(str, Enum):
    MATERIAL_CRITICAL = "MATERIAL_CRITICAL"
    RUPTURE_IMMINENT = "RUPTURE_IMMINENT"
    PRODUCTION_BLOCKED = "PRODUCTION_BLOCKED"
    SUPPLIER_DEGRADED = "SUPPLIER_DEGRADED"


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        """Sort key, most severe first."""
        return {"CRITICAL": 0, "WARNING": 1, "INFO": 2}[self.value]


class AlertEntityType(str, Enum):
    MATERIAL = "MATERIAL"
    SUPPLIER = "SUPPLIER"
    RECIPE = "RECIPE"
    PURCHASE_ORDER = "PURCHASE_ORDER"


@dataclass(frozen=True)
class AlertInfo:
    id: UUID
    alert_type: AlertType
    severity: AlertSeverity
    entity_type: AlertEntityType
    entity_id: UUID
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by_id: UUID | None = None

    @property
    def is_active(self) -> bool:
        return self.acknowledged_at is None

    @property
    def postponed_until(self) -> str | None:
        postponement = self.metadata.get("postponement") or {}
        return postponement.get("postponed_until")


@dataclass(frozen=True)
class PostponeResult:
    material_id: UUID
    duration: str
    postponed_until: datetime
    alerts_updated: int
    postponements_in_window: int


@dataclass(frozen=True)
class ScanResult:
    """Counts of what one scan raised; ``new_alerts`` excludes deduplicated ones."""

    materials_scanned: int
    suppliers_scanned: int
    material_critical: int
    rupture_imminent: int
    supplier_degraded: int
    new_alerts: int
    started_at: datetime
    completed_at: datetime

    @property
    def total_raised(self) -> int:
        return self.material_critical + self.rupture_imminent + self.supplier_degraded


@dataclass(frozen=True)
class AlertCounts:
    total: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0
    unacknowledged: int = 0
    critical_unacknowledged: int = 0


@dataclass(frozen=True)
class SupplierPerformance:
    supplier_id: UUID
    code: str
    name: str
    grade: SupplierGrade | None
    total_deliveries: int
    late_deliveries: int
    late_delivery_rate: float
