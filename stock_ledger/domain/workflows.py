"""
Inventory Count Workflow.

State machine for count sessions.  The engine asks the workflow which
state an action leads to; anything the table does not list is rejected.
A transition's guard is checked against the count lines before it is
taken, and ``posts_entry`` marks the one transition that adjusts stock.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from stock_ledger.logging_config import get_logger

logger = get_logger("domain.workflows")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition, checked against the count lines."""
    name: str
    description: str
    check: Callable[[Sequence[Any]], bool] = field(compare=False, repr=False)


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    posts_entry: bool = False

    def allows(self, lines: Sequence[Any]) -> bool:
        return self.guard is None or self.guard.check(lines)


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def find(self, from_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` out of ``from_state``, if any."""
        for transition in self.transitions:
            if transition.from_state == from_state and transition.action == action:
                return transition
        return None

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ALL_LINES_COUNTED = Guard(
    name="all_lines_counted",
    description="Every count line has a recorded physical quantity",
    check=lambda lines: all(line.is_recorded for line in lines),
)


# -----------------------------------------------------------------------------
# Count Workflow
# -----------------------------------------------------------------------------

COUNT_WORKFLOW = Workflow(
    name="inventory_count",
    description="Physical inventory count and reconciliation",
    initial_state="draft",
    states=(
        "draft",
        "in_progress",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "in_progress", action="start"),
        Transition(
            "in_progress", "completed", action="finalize",
            guard=ALL_LINES_COUNTED, posts_entry=True,
        ),
        Transition("draft", "cancelled", action="cancel"),
        Transition("in_progress", "cancelled", action="cancel"),
    ),
    terminal_states=("completed", "cancelled"),
)

logger.debug(
    "count_workflow_registered",
    extra={
        "workflow_name": COUNT_WORKFLOW.name,
        "state_count": len(COUNT_WORKFLOW.states),
        "transition_count": len(COUNT_WORKFLOW.transitions),
        "initial_state": COUNT_WORKFLOW.initial_state,
    },
)
