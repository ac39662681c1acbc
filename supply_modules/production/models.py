"""Production gating DTOs."""

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class Blocker:
    """One mandatory ingredient the ledger cannot cover."""
    material_id: UUID
    material_code: str
    material_name: str
    required: float
    available: float

    @property
    def shortage(self) -> float:
        return max(0.0, self.required - self.available)


@dataclass(frozen=True)
class ProductionCheck:
    recipe_id: UUID
    batch_count: int
    blockers: tuple[Blocker, ...] = field(default_factory=tuple)
    alert_id: UUID | None = None

    @property
    def can_start(self) -> bool:
        return not self.blockers
