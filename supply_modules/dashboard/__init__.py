"""Dashboard Module: the aggregated procurement overview."""

from supply_modules.dashboard.service import DashboardSnapshot, SupplyDashboard

__all__ = [
    "DashboardSnapshot",
    "SupplyDashboard",
]
