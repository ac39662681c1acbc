"""Kernel services (write side)."""

from supply_kernel.services.auditor_service import AuditorService, AuditTrace
from supply_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditorService",
    "AuditTrace",
    "SequenceService",
]
