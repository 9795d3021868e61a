"""
Canonical workflow types (``erp_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Every document type
(PO, GRN, invoice, SO, delivery, transfer, adjustment, opname) declares
its lifecycle as a ``Workflow`` made of ``Transition`` edges, optionally
gated by a named ``Guard``.  The tables are data; the executor in
``erp_services.state_machine`` interprets them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* The transition graph is acyclic (initial -> ... -> terminal DAG).

``Workflow.problems()`` reports violations; ``Workflow.check()`` raises.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires.

    Contract: frozen, descriptive only.  Evaluation is done by the guard
    function registered under ``name`` with the state machine.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid status edge.

    Several transitions may share ``(from_state, action)``; the first one
    whose guard passes wins.  This is how GRN ``accept`` routes to
    ACCEPTED or PARTIAL.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    mutates_stock: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for one document type."""
    name: str
    doc_type: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def candidates(self, state: str, action: str) -> tuple[Transition, ...]:
        """Edges leaving ``state`` for ``action``, in declaration order."""
        return tuple(
            t for t in self.transitions
            if t.from_state == state and t.action == action
        )

    def actions_from(self, state: str) -> tuple[str, ...]:
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == state and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    @property
    def guards(self) -> tuple[Guard, ...]:
        found: dict[str, Guard] = {}
        for t in self.transitions:
            if t.guard is not None:
                found.setdefault(t.guard.name, t.guard)
        return tuple(found.values())

    def problems(self) -> list[str]:
        issues: list[str] = []
        states = set(self.states)
        if self.initial_state not in states:
            issues.append(f"initial state {self.initial_state} not in states")
        for term in self.terminal_states:
            if term not in states:
                issues.append(f"terminal state {term} not in states")
        for t in self.transitions:
            for s in (t.from_state, t.to_state):
                if s not in states:
                    issues.append(f"{t.action}: unknown state {s}")
            if t.from_state in self.terminal_states:
                issues.append(f"{t.action}: leaves terminal state {t.from_state}")

        reachable = {self.initial_state}
        frontier = [self.initial_state]
        while frontier:
            current = frontier.pop()
            for t in self.transitions:
                if t.from_state == current and t.to_state not in reachable:
                    reachable.add(t.to_state)
                    frontier.append(t.to_state)
        for s in self.states:
            if s not in reachable:
                issues.append(f"state {s} is unreachable")

        if self._has_cycle():
            issues.append("transition graph contains a cycle")
        return issues

    def check(self) -> Workflow:
        issues = self.problems()
        if issues:
            raise ValueError(f"Workflow {self.name} is malformed: {'; '.join(issues)}")
        return self

    def _has_cycle(self) -> bool:
        edges: dict[str, set[str]] = {}
        for t in self.transitions:
            edges.setdefault(t.from_state, set()).add(t.to_state)
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(node: str) -> bool:
            if node in done:
                return False
            if node in visiting:
                return True
            visiting.add(node)
            if any(visit(n) for n in edges.get(node, ())):
                return True
            visiting.discard(node)
            done.add(node)
            return False

        return any(visit(s) for s in self.states)
