"""
supply_config -- single public entrypoint for procurement policy.

Responsibility:
    Provides the ONLY way to obtain business constants at runtime through
    ``get_active_policy()``.  Services receive the returned ``SupplyPolicy``
    through their constructors; none of them reads YAML or hard-codes a
    threshold, weight, duration or role.

Architecture position:
    Configuration layer.  Sits above ``supply_kernel`` and below
    ``supply_modules``.  The kernel MUST NEVER import from ``supply_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested policy file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every load emits a ``supply_policy_loaded`` log entry with the policy
    version and checksum, tying decisions back to the configuration that
    governed them.
"""

from __future__ import annotations

from pathlib import Path

from supply_config.loader import load_policy
from supply_config.schema import (
    AlertPolicy,
    OverReceiptPolicy,
    PurchasingPolicy,
    RiskPolicy,
    StockPolicy,
    SupplyPolicy,
)
from supply_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_POLICY_PATH = Path(__file__).parent / "defaults.yaml"

_cache: dict[Path, SupplyPolicy] = {}


def get_active_policy(path: Path | None = None) -> SupplyPolicy:
    """
    The ONLY public configuration entrypoint.

    Loads (and caches per path) the policy file, defaulting to the packaged
    ``defaults.yaml``.
    """
    resolved = (path or DEFAULT_POLICY_PATH).resolve()
    policy = _cache.get(resolved)
    if policy is None:
        policy = load_policy(resolved)
        _cache[resolved] = policy
        _logger.info(
            "supply_policy_loaded",
            extra={
                "path": str(resolved),
                "policy_version": policy.version,
                "checksum": policy.checksum,
            },
        )
    return policy


def clear_policy_cache() -> None:
    """Drop cached policies. FOR TESTING ONLY."""
    _cache.clear()


__all__ = [
    "AlertPolicy",
    "OverReceiptPolicy",
    "PurchasingPolicy",
    "RiskPolicy",
    "StockPolicy",
    "SupplyPolicy",
    "clear_policy_cache",
    "get_active_policy",
]
