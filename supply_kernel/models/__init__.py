"""Kernel models."""

from supply_kernel.models.audit_event import AuditAction, AuditEvent

__all__ = [
    "AuditAction",
    "AuditEvent",
]
