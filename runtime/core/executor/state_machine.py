"""Invocation record lifecycle state machine.

Canonical lifecycle:
Unknown (unsaved) -> Scheduled -> Created | Failed

Notes:
- Only `state` is mutable on a stored record.
- The scheduler creates records as Scheduled; only the invoker moves them on.
- Created and Failed are terminal.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from errors import ConflictError

if TYPE_CHECKING:
    from storage.interfaces import InvocationRecord


class InvocationState(str, Enum):
    UNKNOWN = "Unknown"
    SCHEDULED = "Scheduled"
    CREATED = "Created"
    FAILED = "Failed"

    @classmethod
    def parse(cls, raw: str | None) -> "InvocationState":
        for s in cls:
            if s.value == raw:
                return s
        return cls.UNKNOWN


_TERMINAL_STATES = {InvocationState.CREATED, InvocationState.FAILED}

_ALLOWED: dict[InvocationState, set[InvocationState]] = {
    InvocationState.UNKNOWN: set(),
    InvocationState.SCHEDULED: {InvocationState.CREATED, InvocationState.FAILED},
    InvocationState.CREATED: set(),
    InvocationState.FAILED: set(),
}


def is_terminal(state: InvocationState) -> bool:
    return state in _TERMINAL_STATES


def check_transition(current: InvocationState, new: InvocationState) -> None:
    if is_terminal(current):
        raise ConflictError(f"Invocation is terminal; cannot transition from {current.value} to {new.value}")
    if new not in _ALLOWED[current]:
        raise ConflictError(f"Invalid invocation state transition: {current.value} -> {new.value}")


def eligibility_problem(record: "InvocationRecord") -> str | None:
    """Return why a record cannot be invoked, or None when it can."""
    if record.state is not InvocationState.SCHEDULED:
        return "not scheduled"
    if record.username is None:
        return "has no username"
    if record.message is None:
        return "has no message"
    return None
