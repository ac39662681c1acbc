"""
ProductionGate (``supply_modules.production.service``).

Responsibility
--------------
Decides whether a production run of ``batch_count`` batches of a recipe may
start, given current ledger stock, and raises a blocking alert when it may
not.

Architecture position
---------------------
**Modules layer**.  Reads stock through ``StockLedgerEngine`` and raises
alerts through an ``AlertEngine`` that shares this session, so the read
and the alert are one transaction.

Invariants enforced
-------------------
* Only mandatory, stock-affecting recipe items are checked.
* Stock for all checked items is fetched in one aggregate query.
* required = ceil(quantity_per_batch * batch_count).

Failure modes
-------------
* ``ValidationError`` -- ``batch_count < 1``.
* ``NotFoundError`` -- unknown recipe.
"""

from __future__ import annotations

import math
from uuid import UUID

from sqlalchemy.orm import Session

from supply_config import SupplyPolicy, get_active_policy
from supply_kernel.db.base import SYSTEM_ACTOR_ID
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.exceptions import NotFoundError, ValidationError
from supply_kernel.logging_config import get_logger
from supply_modules.alerts.models import AlertEntityType, AlertSeverity, AlertType
from supply_modules.alerts.service import AlertEngine
from supply_modules.catalog.orm import RecipeModel
from supply_modules.production.models import Blocker, ProductionCheck
from supply_modules.stock.ledger import StockLedgerEngine

logger = get_logger("modules.production.service")


class ProductionGate:
    """
    Admit or deny a production run.

    Contract:
        ``can_start`` returns a ``ProductionCheck``; a denied run is a normal
        result, not an exception.

    Guarantees:
        - A denial raises (or reuses) exactly one active PRODUCTION_BLOCKED
          alert for the recipe.
        - With ``auto_commit=True`` the alert is committed before returning.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SupplyPolicy | None = None,
        ledger: StockLedgerEngine | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or get_active_policy()
        self._ledger = ledger or StockLedgerEngine(session, self._clock, self._policy)
        self._alerts = AlertEngine(
            session, self._clock, self._policy, ledger=self._ledger, auto_commit=False
        )
        self._auto_commit = auto_commit

    def can_start(
        self,
        recipe_id: UUID,
        batch_count: int,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> ProductionCheck:
        try:
            if batch_count is None or batch_count < 1:
                raise ValidationError("batch_count", f"must be >= 1, got {batch_count}")
            recipe = self._session.get(RecipeModel, recipe_id)
            if recipe is None:
                raise NotFoundError("Recipe", recipe_id)

            items = [item for item in recipe.items if item.is_mandatory and item.affects_stock]
            stock = self._ledger.compute_current_stock({item.material_id for item in items})

            blockers = []
            for item in items:
                required = float(math.ceil(item.quantity_per_batch * batch_count))
                available = stock.get(item.material_id, 0.0)
                if available < required:
                    blockers.append(
                        Blocker(
                            material_id=item.material_id,
                            material_code=item.material.code,
                            material_name=item.material.name,
                            required=required,
                            available=available,
                        )
                    )

            if not blockers:
                logger.info(
                    "production_admitted",
                    extra={"recipe_id": str(recipe_id), "batch_count": batch_count},
                )
                return ProductionCheck(recipe_id=recipe.id, batch_count=batch_count)

            alert = self._alerts.raise_alert(
                AlertType.PRODUCTION_BLOCKED,
                AlertSeverity.CRITICAL,
                AlertEntityType.RECIPE,
                recipe.id,
                f"Production of {recipe.name} blocked: "
                f"{len(blockers)} ingredient(s) short for {batch_count} batch(es)",
                metadata={
                    "recipe_code": recipe.code,
                    "recipe_name": recipe.name,
                    "batch_count": batch_count,
                    "shortages": [
                        {
                            "material_id": str(b.material_id),
                            "code": b.material_code,
                            "name": b.material_name,
                            "required": b.required,
                            "available": b.available,
                            "shortage": b.shortage,
                        }
                        for b in blockers
                    ],
                },
                actor_id=actor_id,
            )
            if self._auto_commit:
                self._session.commit()

            logger.warning(
                "production_blocked",
                extra={
                    "recipe_id": str(recipe_id),
                    "batch_count": batch_count,
                    "blocker_count": len(blockers),
                    "alert_id": str(alert.id),
                },
            )
            return ProductionCheck(
                recipe_id=recipe.id,
                batch_count=batch_count,
                blockers=tuple(blockers),
                alert_id=alert.id,
            )
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise
