"""
SQLAlchemy ORM persistence model for alerts.

Invariants enforced
-------------------
* At most one ACTIVE alert per ``(alert_type, entity_type, entity_id)``:
  partial unique index over rows with ``acknowledged_at IS NULL`` (PostgreSQL
  and SQLite both support the filtered form).  Acknowledged rows are
  unconstrained, so history accumulates.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import TrackedBase
from supply_modules.alerts.models import AlertEntityType, AlertInfo, AlertSeverity, AlertType


class AlertModel(TrackedBase):
    """A raised alert; active while ``acknowledged_at`` is NULL."""

    __tablename__ = "alerts"

    __table_args__ = (
        Index(
            "uq_alert_active_entity",
            "alert_type",
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=text("acknowledged_at IS NULL"),
            sqlite_where=text("acknowledged_at IS NULL"),
        ),
        Index("idx_alert_entity", "entity_type", "entity_id"),
        Index("idx_alert_severity", "severity", "acknowledged_at"),
    )

    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    alert_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    acknowledged_at: Mapped[datetime | None]
    acknowledged_by_id: Mapped[UUID | None]

    @property
    def is_active(self) -> bool:
        return self.acknowledged_at is None

    def to_dto(self) -> AlertInfo:
        return AlertInfo(
            id=self.id,
            alert_type=AlertType(self.alert_type),
            severity=AlertSeverity(self.severity),
            entity_type=AlertEntityType(self.entity_type),
            entity_id=self.entity_id,
            message=self.message,
            metadata=dict(self.alert_metadata or {}),
            created_at=self.created_at,
            acknowledged_at=self.acknowledged_at,
            acknowledged_by_id=self.acknowledged_by_id,
        )

    def __repr__(self) -> str:
        return f"<AlertModel {self.alert_type} {self.entity_type}:{self.entity_id}>"
