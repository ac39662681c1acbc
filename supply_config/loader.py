"""
Configuration Loader (``supply_config.loader``).

Responsibility
--------------
Loads a YAML policy file and parses it into the frozen ``SupplyPolicy``
dataclasses of ``supply_config.schema``.  Runtime callers go through
``supply_config.get_active_policy()`` instead of calling this directly.

Invariants enforced
-------------------
* Unknown keys are rejected with ``ValueError`` so typos never silently
  fall back to a default.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
from pathlib import Path
from typing import Any

import yaml

from supply_config.schema import (
    AlertPolicy,
    OverReceiptPolicy,
    PurchasingPolicy,
    RiskPolicy,
    StockPolicy,
    SupplyPolicy,
)
from supply_kernel.utils.hashing import canonicalize_json

_SECTIONS: dict[str, type] = {
    "risk": RiskPolicy,
    "alerts": AlertPolicy,
    "purchasing": PurchasingPolicy,
    "stock": StockPolicy,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_section(name: str, cls: type, data: dict[str, Any] | None) -> Any:
    data = dict(data or {})
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {', '.join(sorted(unknown))}")

    if cls is PurchasingPolicy and "over_receipt_policy" in data:
        data["over_receipt_policy"] = OverReceiptPolicy(data["over_receipt_policy"])
    if cls is AlertPolicy and "postpone_durations_hours" in data:
        data["postpone_durations_hours"] = {
            str(k): int(v) for k, v in data["postpone_durations_hours"].items()
        }
    return cls(**data)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = canonicalize_json(data)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_policy(data: dict[str, Any]) -> SupplyPolicy:
    """
    Build a ``SupplyPolicy`` from a parsed YAML mapping.

    Raises:
        ValueError: on unknown top-level or section keys, or invalid values.
    """
    allowed = set(_SECTIONS) | {"version"}
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown top-level keys: {', '.join(sorted(unknown))}")

    sections = {
        name: _parse_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    return SupplyPolicy(
        version=str(data.get("version", "default")),
        checksum=compute_checksum(data),
        **sections,
    )


def load_policy(path: Path) -> SupplyPolicy:
    return parse_policy(load_yaml_file(path))
