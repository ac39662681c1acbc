"""Utility modules for the supply kernel."""

from supply_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    to_json_safe,
)

__all__ = [
    "canonicalize_json",
    "hash_audit_event",
    "hash_payload",
    "to_json_safe",
]
