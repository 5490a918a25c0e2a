"""DB-agnostic storage interfaces.

The runtime is stateless except for DB-backed state. The only shared mutable
resource is the invocation record store:
- the scheduler only ever creates records
- the invoker only ever updates a record's state, once, via `set_state`

Concrete drivers live in `storage/` (SQLite default).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace

from executor.state_machine import InvocationState


@dataclass(frozen=True)
class InvocationRecord:
    name: str
    username: str | None
    message: str | None
    state: InvocationState = InvocationState.UNKNOWN

    def with_state(self, state: InvocationState) -> "InvocationRecord":
        return replace(self, state=state)


class InvocationStore(ABC):
    @abstractmethod
    def create(self, record: InvocationRecord) -> bool:
        """Insert a new record. Returns False (never raises) on a duplicate name or a storage failure."""

    @abstractmethod
    def find_by_name(self, name: str) -> InvocationRecord | None:
        """Point lookup by unique name. Raises StorageUnavailableError if the store cannot be read."""

    @abstractmethod
    def set_state(self, name: str, state: InvocationState, *, expected_state: InvocationState | None = None) -> bool:
        """Atomically set a record's state.

        When `expected_state` is given the update only applies if the record is
        currently in that state. Returns whether a matching record existed.
        """
