"""
SupplyPolicy schema.

Frozen dataclasses holding every business constant of the procurement
system.  YAML is parsed into these types by the loader; services receive a
``SupplyPolicy`` (or one of its sections) through their constructor and
never read files or literals themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class OverReceiptPolicy(str, Enum):
    """What ``receive()`` does when cumulative receipts exceed the order."""

    REJECT = "reject"
    ALLOW_WITH_WARNING = "allow_with_warning"


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskPolicy:
    """Risk classification and index weighting."""

    # Fallback order threshold = round(min_stock * multiplier)
    order_threshold_multiplier: float = 1.5
    weight_blocking: int = 30
    weight_out_of_stock: int = 20
    weight_below_safety: int = 10
    healthy_max: int = 30
    watch_max: int = 60

    def __post_init__(self) -> None:
        if self.order_threshold_multiplier <= 0:
            raise ValueError("order_threshold_multiplier must be positive")
        if not 0 <= self.healthy_max <= self.watch_max <= 100:
            raise ValueError("risk bands must satisfy 0 <= healthy_max <= watch_max <= 100")


@dataclass(frozen=True)
class AlertPolicy:
    """Alert postponement rules and supplier grading thresholds."""

    postpone_durations_hours: dict[str, int] = field(
        default_factory=lambda: {"4h": 4, "12h": 12, "24h": 24}
    )
    max_postponements: int = 2
    postpone_window_days: int = 7
    postpone_reason_min_length: int = 10
    grade_a_max_delay_rate: float = 0.10
    grade_b_max_delay_rate: float = 0.20
    critical_delay_rate: float = 0.30

    def __post_init__(self) -> None:
        if not self.postpone_durations_hours:
            raise ValueError("postpone_durations_hours must not be empty")
        if self.max_postponements < 0:
            raise ValueError("max_postponements must be >= 0")
        if not 0 <= self.grade_a_max_delay_rate <= self.grade_b_max_delay_rate <= 1:
            raise ValueError("grade thresholds must satisfy 0 <= A <= B <= 1")


@dataclass(frozen=True)
class PurchasingPolicy:
    """Purchase-order lifecycle rules."""

    order_reference_prefix: str = "BC"
    reception_reference_prefix: str = "REC"
    requisition_reference_prefix: str = "DA"
    manual_proof_min_length: int = 20
    cancel_reason_min_length: int = 10
    admin_role: str = "ADMIN"
    lock_ttl_minutes: int = 5
    over_receipt_policy: OverReceiptPolicy = OverReceiptPolicy.REJECT
    late_critical_days: int = 3
    quantity_epsilon: float = 1e-9

    def __post_init__(self) -> None:
        if self.lock_ttl_minutes <= 0:
            raise ValueError("lock_ttl_minutes must be positive")
        if not 0 <= self.quantity_epsilon < 1:
            raise ValueError("quantity_epsilon must be in [0, 1)")


@dataclass(frozen=True)
class StockPolicy:
    """Metrics batch and reorder suggestion parameters."""

    consumption_window_days: int = 30
    suggestion_safety_days: int = 7
    fallback_min_stock_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.consumption_window_days <= 0:
            raise ValueError("consumption_window_days must be positive")


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SupplyPolicy:
    """The complete runtime policy; the only configuration object services see."""

    version: str = "default"
    risk: RiskPolicy = field(default_factory=RiskPolicy)
    alerts: AlertPolicy = field(default_factory=AlertPolicy)
    purchasing: PurchasingPolicy = field(default_factory=PurchasingPolicy)
    stock: StockPolicy = field(default_factory=StockPolicy)
    checksum: str = ""
