"""
Canonical workflow types (``supply_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines (purchase orders,
requisitions) plus the lookup every lifecycle service runs before mutating
a status.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* A status change happens only through a declared transition:
  ``require_transition`` raises ``InvalidTransitionError`` otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from supply_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.action} {t.from_state}->{t.to_state} "
                    "references an unknown state"
                )

    def sources_for(self, action: str) -> tuple[str, ...]:
        """States from which ``action`` is allowed, in declaration order."""
        seen: dict[str, None] = {}
        for t in self.transitions:
            if t.action == action:
                seen.setdefault(t.from_state, None)
        return tuple(seen)

    def find(self, from_state: str, action: str, to_state: str | None = None) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                if to_state is None or t.to_state == to_state:
                    return t
        return None


def require_transition(
    workflow: Workflow,
    entity_type: str,
    entity_id: Any,
    current_state: str,
    action: str,
    to_state: str | None = None,
) -> Transition:
    """Return the declared transition or raise ``InvalidTransitionError``."""
    transition = workflow.find(current_state, action, to_state)
    if transition is None:
        raise InvalidTransitionError(
            entity_type,
            entity_id,
            action,
            workflow.sources_for(action),
            current_state,
        )
    return transition
