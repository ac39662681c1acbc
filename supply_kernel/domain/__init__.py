"""Pure domain helpers with no ORM or I/O dependencies."""

from supply_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from supply_kernel.domain.workflow import Guard, Transition, Workflow, require_transition

__all__ = [
    "Clock",
    "DeterministicClock",
    "Guard",
    "SystemClock",
    "Transition",
    "Workflow",
    "require_transition",
]
