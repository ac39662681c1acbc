"""
SQLAlchemy ORM persistence models for the Catalog module.

Responsibility
--------------
Database-backed persistence for suppliers, raw materials, recipes and
recipe items.  Rows are created and edited by catalog management; the
procurement services only read them, except for the derived fields
(cached stock, average consumption, supplier grade and delivery counters)
that the scheduled batches and ``receive()`` refresh.

Invariants enforced
-------------------
* ``MaterialModel.order_threshold``, when set, must exceed
  ``safety_threshold`` (validator raising ``InvalidThresholdsError`` plus a
  CHECK constraint).
* ``manual_criticality`` is stored by ``Criticality`` name.
* Codes are unique per table.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from supply_kernel.db.base import TrackedBase
from supply_kernel.exceptions import InvalidThresholdsError, ValidationError
from supply_modules.catalog.models import (
    Criticality,
    MaterialInfo,
    RecipeInfo,
    RecipeItemInfo,
    SupplierGrade,
    SupplierInfo,
)

# ---------------------------------------------------------------------------
# SupplierModel
# ---------------------------------------------------------------------------


class SupplierModel(TrackedBase):
    """A raw-material supplier with its delivery performance counters."""

    __tablename__ = "catalog_suppliers"

    __table_args__ = (
        UniqueConstraint("code", name="uq_supplier_code"),
        Index("idx_supplier_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(254), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    total_deliveries: Mapped[int] = mapped_column(nullable=False, default=0)
    late_deliveries: Mapped[int] = mapped_column(nullable=False, default=0)
    late_delivery_rate: Mapped[float] = mapped_column(nullable=False, default=0.0)
    performance_updated_at: Mapped[datetime | None]

    def record_delivery(self, late: bool) -> None:
        """Count one completed delivery and refresh the late-delivery rate."""
        self.total_deliveries = (self.total_deliveries or 0) + 1
        if late:
            self.late_deliveries = (self.late_deliveries or 0) + 1
        self.late_delivery_rate = self.late_deliveries / self.total_deliveries

    def to_dto(self) -> SupplierInfo:
        return SupplierInfo(
            id=self.id,
            code=self.code,
            name=self.name,
            email=self.email,
            is_active=self.is_active,
            grade=SupplierGrade(self.grade) if self.grade else None,
            total_deliveries=self.total_deliveries or 0,
            late_deliveries=self.late_deliveries or 0,
            late_delivery_rate=self.late_delivery_rate or 0.0,
        )

    def __repr__(self) -> str:
        return f"<SupplierModel {self.code} grade={self.grade}>"


# ---------------------------------------------------------------------------
# MaterialModel
# ---------------------------------------------------------------------------


class MaterialModel(TrackedBase):
    """
    A raw material.

    ``cached_stock`` is a derived, recomputable snapshot written by the
    metrics batch; the movement ledger is the only authoritative source.
    """

    __tablename__ = "catalog_materials"

    __table_args__ = (
        UniqueConstraint("code", name="uq_material_code"),
        CheckConstraint(
            "order_threshold IS NULL OR safety_threshold IS NULL "
            "OR order_threshold > safety_threshold",
            name="ck_material_order_above_safety",
        ),
        CheckConstraint("min_stock >= 0", name="ck_material_min_stock"),
        Index("idx_material_supplier", "primary_supplier_id"),
        Index("idx_material_active_tracked", "is_active", "is_stock_tracked"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="kg")
    cached_stock: Mapped[float] = mapped_column(nullable=False, default=0.0)
    min_stock: Mapped[float] = mapped_column(nullable=False, default=0.0)
    safety_threshold: Mapped[float | None]
    order_threshold: Mapped[float | None]
    lead_time_days: Mapped[int] = mapped_column(nullable=False, default=7)
    average_daily_consumption: Mapped[float | None]
    manual_criticality: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Criticality.MEDIUM.name
    )
    primary_supplier_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("catalog_suppliers.id"), nullable=True
    )
    is_stock_tracked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metrics_updated_at: Mapped[datetime | None]

    primary_supplier: Mapped[SupplierModel | None] = relationship(lazy="selectin")

    @validates("safety_threshold", "order_threshold")
    def _validate_thresholds(self, key: str, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValidationError(key, f"must be >= 0, got {value}")
        safety = value if key == "safety_threshold" else self.safety_threshold
        order = value if key == "order_threshold" else self.order_threshold
        if safety is not None and order is not None and order <= safety:
            raise InvalidThresholdsError(safety, order)
        return value

    @validates("manual_criticality")
    def _validate_criticality(self, key: str, value: Criticality | str) -> str:
        try:
            return Criticality.parse(value).name
        except KeyError:
            raise ValidationError(key, f"unknown criticality {value!r}") from None

    @property
    def criticality(self) -> Criticality:
        return Criticality[self.manual_criticality]

    def to_dto(self) -> MaterialInfo:
        return MaterialInfo(
            id=self.id,
            code=self.code,
            name=self.name,
            unit=self.unit,
            min_stock=self.min_stock,
            lead_time_days=self.lead_time_days,
            manual_criticality=self.criticality,
            cached_stock=self.cached_stock,
            safety_threshold=self.safety_threshold,
            order_threshold=self.order_threshold,
            average_daily_consumption=self.average_daily_consumption,
            primary_supplier_id=self.primary_supplier_id,
            is_stock_tracked=self.is_stock_tracked,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<MaterialModel {self.code}>"


# ---------------------------------------------------------------------------
# RecipeModel / RecipeItemModel
# ---------------------------------------------------------------------------


class RecipeModel(TrackedBase):
    """A production recipe; only active recipes count toward criticality."""

    __tablename__ = "catalog_recipes"

    __table_args__ = (
        UniqueConstraint("code", name="uq_recipe_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    items: Mapped[list["RecipeItemModel"]] = relationship(
        "RecipeItemModel",
        back_populates="recipe",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self) -> RecipeInfo:
        return RecipeInfo(
            id=self.id,
            code=self.code,
            name=self.name,
            is_active=self.is_active,
            items=tuple(item.to_dto() for item in self.items),
        )

    def __repr__(self) -> str:
        return f"<RecipeModel {self.code} active={self.is_active}>"


class RecipeItemModel(TrackedBase):
    """One ingredient of a recipe, quantity expressed per batch."""

    __tablename__ = "catalog_recipe_items"

    __table_args__ = (
        Index("idx_recipe_item_recipe", "recipe_id"),
        Index("idx_recipe_item_material", "material_id"),
    )

    recipe_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_recipes.id"), nullable=False)
    material_id: Mapped[UUID] = mapped_column(ForeignKey("catalog_materials.id"), nullable=False)
    quantity_per_batch: Mapped[float] = mapped_column(nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    affects_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    recipe: Mapped[RecipeModel] = relationship(back_populates="items")
    material: Mapped[MaterialModel] = relationship(lazy="selectin")

    def to_dto(self) -> RecipeItemInfo:
        return RecipeItemInfo(
            material_id=self.material_id,
            quantity_per_batch=self.quantity_per_batch,
            is_mandatory=self.is_mandatory,
            affects_stock=self.affects_stock,
        )
