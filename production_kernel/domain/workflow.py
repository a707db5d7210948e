"""
Canonical workflow types and the transition tables (``production_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for state machines plus the three tables that govern
job cards, rework jobs and client returns.  Services never compare status
strings ad hoc: they ask the table for the transition matching their
action and receive ``InvalidTransitionError`` when none exists.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass

from production_kernel.domain.statuses import JobStatus, ReturnStatus, ReworkStatus
from production_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the owning service evaluates it.
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
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t} references unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state} has a transition")

    def find(self, from_state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def allowed_actions(self, from_state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == from_state)

    def allowed_targets(self, from_state: str) -> tuple[str, ...]:
        return tuple(dict.fromkeys(t.to_state for t in self.transitions if t.from_state == from_state))

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


def _value(state) -> str:
    return state.value if hasattr(state, "value") else str(state)


def require_transition(
    workflow: Workflow,
    *,
    entity_type: str,
    entity_id: object,
    current: object,
    action: str,
) -> Transition:
    """Return the transition for ``action`` from ``current`` or raise.

    Raises:
        InvalidTransitionError: No such transition exists in the table.
    """
    state = _value(current)
    transition = workflow.find(state, action)
    if transition is None:
        raise InvalidTransitionError(
            entity_type,
            str(entity_id),
            state,
            action=action,
            reason=f"allowed from {state}: {', '.join(workflow.allowed_actions(state)) or 'none'}",
        )
    return transition


def require_target(
    workflow: Workflow,
    *,
    entity_type: str,
    entity_id: object,
    current: object,
    target: object,
) -> Transition:
    """Return the first transition from ``current`` to ``target`` or raise."""
    state, to_state = _value(current), _value(target)
    for t in workflow.transitions:
        if t.from_state == state and t.to_state == to_state:
            return t
    raise InvalidTransitionError(entity_type, str(entity_id), state, to_state=to_state)


# ---------------------------------------------------------------------------
# Job card
# ---------------------------------------------------------------------------

RESUME_GUARD = Guard(
    name="rework_cleared",
    description="Every rework job sourced from this job is COMPLETED or CANCELLED",
)

GATE_PASS_GUARD = Guard(
    name="gate_passed",
    description="Latest inspection of the stage is PASS or NA, or the stage is not inspected",
)

_J = JobStatus

JOB_CARD_WORKFLOW = Workflow(
    name="job_card",
    description="Job card status lifecycle",
    initial_state=_J.NOT_STARTED.value,
    states=tuple(s.value for s in JobStatus),
    transitions=(
        Transition(_J.NOT_STARTED.value, _J.IN_PROGRESS.value, "start_stage"),
        Transition(_J.IN_PROGRESS.value, _J.IN_PROGRESS.value, "start_stage"),
        Transition(_J.REWORK.value, _J.IN_PROGRESS.value, "start_stage", guard=RESUME_GUARD),
        Transition(_J.IN_PROGRESS.value, _J.IN_PROGRESS.value, "log_hours"),
        Transition(_J.IN_PROGRESS.value, _J.IN_PROGRESS.value, "complete_stage"),
        Transition(_J.IN_PROGRESS.value, _J.IN_PROGRESS.value, "advance_stage", guard=GATE_PASS_GUARD),
        Transition(_J.IN_PROGRESS.value, _J.COMPLETED.value, "complete_job", guard=GATE_PASS_GUARD),
        Transition(_J.IN_PROGRESS.value, _J.REWORK.value, "fail_inspection"),
        Transition(_J.COMPLETED.value, _J.REWORK.value, "fail_inspection"),
        Transition(_J.REWORK.value, _J.REWORK.value, "fail_inspection"),
        Transition(_J.NOT_STARTED.value, _J.NOT_STARTED.value, "assign"),
        Transition(_J.IN_PROGRESS.value, _J.IN_PROGRESS.value, "assign"),
        Transition(_J.REWORK.value, _J.REWORK.value, "assign"),
        Transition(_J.NOT_STARTED.value, _J.CANCELLED.value, "cancel"),
        Transition(_J.IN_PROGRESS.value, _J.CANCELLED.value, "cancel"),
        Transition(_J.REWORK.value, _J.CANCELLED.value, "cancel"),
    ),
    terminal_states=(_J.CANCELLED.value,),
)

# ---------------------------------------------------------------------------
# Rework job
# ---------------------------------------------------------------------------

_R = ReworkStatus

REWORK_JOB_WORKFLOW = Workflow(
    name="rework_job",
    description="Rework job status lifecycle",
    initial_state=_R.OPEN.value,
    states=tuple(s.value for s in ReworkStatus),
    transitions=(
        Transition(_R.OPEN.value, _R.IN_PROGRESS.value, "start"),
        Transition(_R.IN_PROGRESS.value, _R.COMPLETED.value, "complete"),
        Transition(_R.OPEN.value, _R.CANCELLED.value, "cancel"),
        Transition(_R.IN_PROGRESS.value, _R.CANCELLED.value, "cancel"),
    ),
    terminal_states=(_R.COMPLETED.value, _R.CANCELLED.value),
)

OPEN_REWORK_STATES = frozenset({_R.OPEN.value, _R.IN_PROGRESS.value})

# ---------------------------------------------------------------------------
# Client return
# ---------------------------------------------------------------------------

_T = ReturnStatus

RETURN_WORKFLOW = Workflow(
    name="client_return",
    description="Client return lifecycle",
    initial_state=_T.PENDING.value,
    states=tuple(s.value for s in ReturnStatus),
    transitions=(
        Transition(_T.PENDING.value, _T.INSPECTED.value, "inspect"),
        Transition(_T.PENDING.value, _T.REJECTED.value, "reject"),
        Transition(_T.INSPECTED.value, _T.ACCEPTED.value, "settle_accept"),
        Transition(_T.INSPECTED.value, _T.REJECTED.value, "settle_reject"),
    ),
    terminal_states=(_T.ACCEPTED.value, _T.REJECTED.value),
)
