"""
Production Module.

Gates production runs on ledger stock of mandatory recipe ingredients.
"""

from supply_modules.production.models import Blocker, ProductionCheck
from supply_modules.production.service import ProductionGate

__all__ = [
    "Blocker",
    "ProductionCheck",
    "ProductionGate",
]
