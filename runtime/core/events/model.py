"""Events exchanged with the driving scheduler.

An event payload has exactly two shapes, decided by the event name:
- ProgressCount: the scheduler's own continuation carries how many
  invocations have been scheduled so far
- RecordName: invoke/done events carry the name of an invocation record

Raw wire payloads are resolved into these types once, at the boundary
(`PayloadCodec`), so processors never cast ad hoc.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

from errors import EventPayloadError, NotFoundError


@dataclass(frozen=True)
class ProgressCount:
    count: int


@dataclass(frozen=True)
class RecordName:
    name: str


EventPayload = Union[ProgressCount, RecordName, None]


@dataclass(frozen=True)
class Event:
    name: str
    scheduled_time: int = 0
    payload: EventPayload = None


@dataclass(frozen=True)
class EventResult:
    message: str
    events: tuple[Event, ...] = field(default_factory=tuple)
    success: bool = True
    elapsed_ms: int = 0


class EventProcessor(ABC):
    """Handles events of the names it declares, one event per call."""

    @property
    @abstractmethod
    def event_names(self) -> tuple[str, ...]:
        ...

    @abstractmethod
    def process_event(self, event: Event) -> EventResult:
        ...


def record_name_of(event: Event) -> str:
    if not isinstance(event.payload, RecordName):
        raise EventPayloadError(event.name, "expected a record name")
    return event.payload.name


def progress_of(event: Event) -> int:
    if event.payload is None:
        return 0
    if not isinstance(event.payload, ProgressCount):
        raise EventPayloadError(event.name, "expected a progress count")
    return event.payload.count


class PayloadCodec:
    """Converts events to and from `{"name", "scheduled_time", "payload"}` documents."""

    def __init__(self, *, progress_events: Iterable[str], record_events: Iterable[str], strict: bool = True):
        self._progress = frozenset(progress_events)
        self._records = frozenset(record_events)
        self._strict = strict

    def decode_payload(self, event_name: str, raw: Any) -> EventPayload:
        if event_name in self._progress:
            if raw is None:
                return None
            # bool is an int subclass; reject it explicitly.
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise EventPayloadError(event_name, f"progress count must be an integer (got {type(raw).__name__})")
            if raw < 0:
                raise EventPayloadError(event_name, f"progress count must be >= 0 (got {raw})")
            return ProgressCount(raw)

        if event_name in self._records:
            if not isinstance(raw, str) or not raw:
                raise EventPayloadError(event_name, "record name must be a non-empty string")
            return RecordName(raw)

        if self._strict:
            raise NotFoundError("EventType", event_name)
        if raw is not None:
            raise EventPayloadError(event_name, "unknown event types cannot carry a payload")
        return None

    def from_wire(self, doc: dict[str, Any]) -> Event:
        name = str(doc["name"])
        return Event(
            name=name,
            scheduled_time=int(doc.get("scheduled_time") or 0),
            payload=self.decode_payload(name, doc.get("payload")),
        )

    @staticmethod
    def to_wire(event: Event) -> dict[str, Any]:
        payload: Any
        if isinstance(event.payload, ProgressCount):
            payload = event.payload.count
        elif isinstance(event.payload, RecordName):
            payload = event.payload.name
        else:
            payload = None
        return {"name": event.name, "scheduled_time": event.scheduled_time, "payload": payload}
