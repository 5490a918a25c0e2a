"""Local event driver.

In deployment the driving scheduler is external: it delivers one event per
processor call and enqueues whatever events come back. For local runs and
end-to-end tests this module provides a minimal in-process stand-in:
- events are delivered in (scheduled_time, submission order)
- events with no processor (e.g. `done`) are terminal and only counted
- `realtime=True` waits until each event is due before delivering it

There is no retry: an unsuccessful result is recorded and the run continues.
BookkeepingLostError is not caught and stops the run.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from errors import ConflictError
from events.model import Event, EventProcessor, EventResult
from utils import now_millis

logger = logging.getLogger(__name__)


@dataclass
class DriverReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    terminal: list[Event] = field(default_factory=list)
    results: list[tuple[Event, EventResult]] = field(default_factory=list)


class LocalEventDriver:
    def __init__(
        self,
        processors: Iterable[EventProcessor],
        *,
        realtime: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], int] = now_millis,
    ):
        self._processors: dict[str, EventProcessor] = {}
        for p in processors:
            for name in p.event_names:
                if name in self._processors:
                    raise ConflictError(f"Event name {name!r} is handled by more than one processor")
                self._processors[name] = p
        self._realtime = realtime
        self._sleep = sleep
        self._clock = clock
        self._queue: list[tuple[int, int, Event]] = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._queue)

    def submit(self, event: Event) -> None:
        heapq.heappush(self._queue, (event.scheduled_time, next(self._seq), event))

    def run_until_idle(self, max_events: int | None = None) -> DriverReport:
        report = DriverReport()
        while self._queue:
            if max_events is not None and report.processed >= max_events:
                break
            due, _, event = heapq.heappop(self._queue)

            processor = self._processors.get(event.name)
            if processor is None:
                report.terminal.append(event)
                continue

            if self._realtime:
                wait_ms = due - self._clock()
                if wait_ms > 0:
                    self._sleep(wait_ms / 1000.0)

            result = processor.process_event(event)
            report.processed += 1
            report.results.append((event, result))
            if result.success:
                report.succeeded += 1
            else:
                report.failed += 1
                logger.info(result.message, extra={"event": "event_unsuccessful", "event_name": event.name})

            for produced in result.events:
                self.submit(produced)

        logger.info("driver_idle processed=%d pending=%d", report.processed, len(self._queue), extra={"event": "driver_idle"})
        return report
