"""
Canonical workflow types (``billing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Modules declare their
lifecycle as a ``Workflow`` of ``Transition`` rows, optionally gated by a
named ``Guard``; services look up the legal transition for
(current_state, action) before mutating status.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires.

    Descriptive only; the owning module evaluates it.
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
    has_side_effects: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    ``terminal_states`` are states with no outgoing transitions (optional).
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                f"not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} references "
                    f"unknown state"
                )

    def find_transition(self, current_state: str, action: str) -> Transition | None:
        """Return the transition for (current_state, action), or None."""
        for t in self.transitions:
            if t.from_state == current_state and t.action == action:
                return t
        return None

    def reachable_states(self) -> frozenset[str]:
        """States reachable from ``initial_state`` through declared transitions."""
        seen = {self.initial_state}
        frontier = [self.initial_state]
        while frontier:
            state = frontier.pop()
            for t in self.transitions:
                if t.from_state == state and t.to_state not in seen:
                    seen.add(t.to_state)
                    frontier.append(t.to_state)
        return frozenset(seen)
