"""Core runtime error types.

Expected business outcomes (missing records, wrong state, unknown users, failed
calls) are reported as unsuccessful event results, not raised. The types below
cover configuration, boundary and storage problems, and the one unrecoverable
case: an invocation that happened but could not be recorded.
These exception types are mapped to HTTP responses in the API layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable


class InvokeBenchRuntimeError(Exception):
    """Base class for runtime errors."""


@dataclass(frozen=True)
class SchemaViolation:
    path: str
    message: str


class SchemaValidationError(InvokeBenchRuntimeError):
    def __init__(self, kind: str, violations: Iterable[SchemaViolation]):
        self.kind = kind
        self.violations = list(violations)
        super().__init__(f"{kind} failed schema validation ({len(self.violations)} violation(s))")


class NotFoundError(InvokeBenchRuntimeError):
    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class ConflictError(InvokeBenchRuntimeError):
    def __init__(self, message: str, details: Any | None = None):
        self.details = details
        super().__init__(message)


class PolicyViolationError(InvokeBenchRuntimeError):
    def __init__(self, message: str, details: Any | None = None):
        self.details = details
        super().__init__(message)


class EventPayloadError(InvokeBenchRuntimeError):
    def __init__(self, event_name: str, message: str):
        self.event_name = event_name
        super().__init__(f"Invalid payload for event '{event_name}': {message}")


class StorageUnavailableError(InvokeBenchRuntimeError):
    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Storage {operation} failed: {message}")


class BookkeepingLostError(InvokeBenchRuntimeError):
    """The remote call succeeded but its outcome could not be recorded."""

    def __init__(self, record_name: str):
        self.record_name = record_name
        super().__init__(f"Invocation {record_name} was executed but not recorded.")
