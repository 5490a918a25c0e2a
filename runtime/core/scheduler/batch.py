"""Batch scheduling of web script invocations.

Each call schedules at most `batch_size` invocations and, if the target has not
been reached, hands back a continuation event addressed to itself that carries
the running total. Progress therefore lives in the event, never in the process.

Invocations are paced `time_between_invocations_ms` apart. The continuation is
timestamped at the last invocation's time and the next batch continues from the
continuation's timestamp, so pacing runs unbroken across batches.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from config.settings import SchedulerConfig, validate_scheduler_config
from errors import InvokeBenchRuntimeError
from events.model import Event, EventProcessor, EventResult, ProgressCount, RecordName, progress_of
from executor.state_machine import InvocationState
from storage.interfaces import InvocationRecord, InvocationStore
from users.service import UserDataService
from utils import now_millis

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


def render_message(pattern: str, count: int) -> str:
    """Number the message when the pattern has a placeholder, else use it verbatim."""
    if "%" in pattern:
        return pattern % count
    return pattern


class ScheduleInvocationsProcessor(EventProcessor):
    def __init__(
        self,
        *,
        store: InvocationStore,
        users: UserDataService,
        settings: SchedulerConfig,
        run_id: str,
        invoke_event_name: str = "invoke",
        clock: Callable[[], int] = now_millis,
        id_factory: Callable[[], object] = uuid.uuid4,
    ):
        validate_scheduler_config(settings)
        self._store = store
        self._users = users
        self._settings = settings
        self._run_id = run_id
        self._invoke_event_name = invoke_event_name
        self._clock = clock
        self._id_factory = id_factory

    @property
    def event_names(self) -> tuple[str, ...]:
        return (self._settings.event_name,)

    def process_event(self, event: Event) -> EventResult:
        cfg = self._settings
        already_scheduled = progress_of(event)
        logger.debug(
            "Already scheduled %d %s events and will schedule up to %d more.",
            already_scheduled,
            self._invoke_event_name,
            cfg.batch_size,
            extra={"event": "batch_started", "run_id": self._run_id, "event_name": event.name},
        )

        events: list[Event] = []
        scheduled = event.scheduled_time or self._clock()
        local_count = 0
        skipped = 0
        total_count = already_scheduled

        while local_count < cfg.batch_size and total_count < cfg.number_of_invocations:
            name = f"{self._run_id}-{self._id_factory()}"
            scheduled += cfg.time_between_invocations_ms

            created = self._create_record(name, render_message(cfg.message_pattern, total_count))
            if created:
                events.append(Event(self._invoke_event_name, scheduled, RecordName(name)))
            else:
                skipped += 1

            # The slot is consumed either way so the chain always reaches its target.
            local_count += 1
            total_count += 1

            if not created and cfg.on_create_failure == "stop_batch":
                break

        reschedule = total_count < cfg.number_of_invocations
        if reschedule:
            events.append(Event(event.name, scheduled, ProgressCount(total_count)))

        if skipped:
            message = (
                f"Created {local_count - skipped} of {local_count} scheduled invocations "
                f"(progress {total_count}/{cfg.number_of_invocations}). "
                f"Skipped {skipped} that could not be stored."
            )
        else:
            message = f"Created {total_count} scheduled invocations."

        logger.debug(
            "Scheduled %d invocations and %s self.",
            local_count - skipped,
            "rescheduled" if reschedule else "did not reschedule",
            extra={"event": "batch_finished", "run_id": self._run_id, "event_name": event.name},
        )
        return EventResult(message=message, events=tuple(events))

    def _create_record(self, name: str, message: str) -> bool:
        try:
            username = self._users.get_random_user().username
        except InvokeBenchRuntimeError:
            logger.warning(
                "invocation_user_unavailable",
                extra={"event": "invocation_user_unavailable", "record_name": name},
                exc_info=True,
            )
            return False

        record = InvocationRecord(name=name, username=username, message=message, state=InvocationState.SCHEDULED)
        return self._store.create(record)
