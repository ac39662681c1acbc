"""
Supply Modules.

Procurement domain built on the Supply Kernel.  Each module contains:
- Domain models (the nouns, as frozen dataclasses)
- ORM models (persistence)
- Workflows (state machines), where documents have a lifecycle
- A service facade owning its transaction boundary

Modules:
- Catalog: Suppliers, raw materials, recipes
- Stock: Movement ledger, risk classification, risk index, reorder advice
- Alerts: Deduplicated alerts, postponement, periodic scan
- Purchasing: Requisitions, purchase orders, receptions
- Production: Production gating on ingredient stock
- Dashboard: Aggregated overview
"""

from supply_modules import (
    alerts,
    catalog,
    dashboard,
    production,
    purchasing,
    stock,
)

__all__ = [
    "alerts",
    "catalog",
    "dashboard",
    "production",
    "purchasing",
    "stock",
]
