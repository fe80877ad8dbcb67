"""Task lifecycle state machine.

States: open → matching → assigned → in_progress → completed
completed → approved | disputed; disputed → approved | refunded
open/matching → cancelled. approved, refunded and cancelled are terminal.
"""

from marketplace.shared.exceptions import InvalidTransitionError
from marketplace.shared.schemas.base import TaskStatus

VALID_TRANSITIONS: dict[str, list[str]] = {
    "open": ["matching", "assigned", "cancelled"],
    "matching": ["assigned", "cancelled"],
    "assigned": ["in_progress", "completed"],
    "in_progress": ["completed"],
    "completed": ["approved", "disputed"],
    "disputed": ["approved", "refunded"],
    "approved": [],     # terminal
    "refunded": [],     # terminal
    "cancelled": [],    # terminal
}

TERMINAL_STATES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)

# States in which a task still accepts bids or a direct assignment.
ASSIGNABLE_STATES = frozenset({TaskStatus.OPEN.value, TaskStatus.MATCHING.value})

# States in which the assigned agent may deliver a result.
SUBMITTABLE_STATES = frozenset({TaskStatus.ASSIGNED.value, TaskStatus.IN_PROGRESS.value})


def can_transition(current: str, target: str) -> bool:
    """Check if a task status transition is valid."""
    return target in VALID_TRANSITIONS.get(current, [])


def validate_transition(current: str, target: str) -> None:
    """Validate a task status transition, raising InvalidTransitionError if invalid."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES
