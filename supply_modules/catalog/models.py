"""
Catalog Domain Models.

The nouns the rest of the system reads: suppliers, raw materials, recipes.
Catalog editing itself is done elsewhere; this module only defines the
ranked criticality scale, supplier grades and read DTOs.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from uuid import UUID


class Criticality(IntEnum):
    """
    Business importance of a material to production continuity.

    Ranked total order LOW < MEDIUM < HIGH < BLOCKING, so ``max()`` and
    comparisons are typed operations.  Persisted by name.
    """

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    BLOCKING = 4

    @classmethod
    def parse(cls, value: "Criticality | str") -> "Criticality":
        if isinstance(value, cls):
            return value
        return cls[str(value).upper()]


class SupplierGrade(str, Enum):
    """Supplier reliability grade derived from the late-delivery rate."""

    A = "A"
    B = "B"
    C = "C"

    @property
    def rank(self) -> int:
        return {"A": 1, "B": 2, "C": 3}[self.value]


@dataclass(frozen=True)
class SupplierInfo:
    id: UUID
    code: str
    name: str
    email: str | None = None
    is_active: bool = True
    grade: SupplierGrade | None = None
    total_deliveries: int = 0
    late_deliveries: int = 0
    late_delivery_rate: float = 0.0


@dataclass(frozen=True)
class MaterialInfo:
    """A raw material as stored; ``cached_stock`` is a derived snapshot only."""

    id: UUID
    code: str
    name: str
    unit: str
    min_stock: float
    lead_time_days: int
    manual_criticality: Criticality
    cached_stock: float = 0.0
    safety_threshold: float | None = None
    order_threshold: float | None = None
    average_daily_consumption: float | None = None
    primary_supplier_id: UUID | None = None
    is_stock_tracked: bool = True
    is_active: bool = True


@dataclass(frozen=True)
class RecipeItemInfo:
    material_id: UUID
    quantity_per_batch: float
    is_mandatory: bool = True
    affects_stock: bool = True


@dataclass(frozen=True)
class RecipeInfo:
    id: UUID
    code: str
    name: str
    is_active: bool = True
    items: tuple[RecipeItemInfo, ...] = field(default_factory=tuple)
