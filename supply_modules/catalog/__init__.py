"""
Catalog Module.

Suppliers, raw materials and recipes as read by the procurement services.
"""

from supply_modules.catalog.models import (
    Criticality,
    MaterialInfo,
    RecipeInfo,
    RecipeItemInfo,
    SupplierGrade,
    SupplierInfo,
)

__all__ = [
    "Criticality",
    "MaterialInfo",
    "RecipeInfo",
    "RecipeItemInfo",
    "SupplierGrade",
    "SupplierInfo",
]
