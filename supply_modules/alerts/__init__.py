"""
Alerts Module.

Deduplicated supply alerts: stockouts of critical materials, imminent
ruptures, blocked production and supplier degradation.
"""

from supply_modules.alerts.models import (
    AlertCounts,
    AlertEntityType,
    AlertInfo,
    AlertSeverity,
    AlertType,
    PostponeResult,
    ScanResult,
    SupplierPerformance,
)
from supply_modules.alerts.orm import AlertModel
from supply_modules.alerts.service import AlertEngine, grade_for_delay_rate

__all__ = [
    "AlertCounts",
    "AlertEngine",
    "AlertEntityType",
    "AlertInfo",
    "AlertModel",
    "AlertSeverity",
    "AlertType",
    "PostponeResult",
    "ScanResult",
    "SupplierPerformance",
    "grade_for_delay_rate",
]
