"""Invocation of one scheduled web script call per event.

Flow per `invoke` event:
- load the record and check it is still eligible (Scheduled, username, message)
- resolve the user the call is authenticated as
- perform the call (only the call itself is timed)
- record Created or Failed with a conditional update from Scheduled

Business outcomes are returned as unsuccessful results. The single exception
that escapes is BookkeepingLostError: the call went through but the record
could not be moved to Created.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from config.settings import USER_NOT_FOUND_POLICIES
from errors import BookkeepingLostError, InvokeBenchRuntimeError, PolicyViolationError, StorageUnavailableError
from events.model import Event, EventProcessor, EventResult, RecordName, record_name_of
from executor.http_client import CallStatus, WebScriptClient
from executor.state_machine import InvocationState, eligibility_problem
from storage.interfaces import InvocationStore
from users.service import UserDataService
from utils import StopWatch, now_millis

logger = logging.getLogger(__name__)


class InvokeProcessor(EventProcessor):
    def __init__(
        self,
        *,
        store: InvocationStore,
        users: UserDataService,
        client: WebScriptClient,
        invoke_event_name: str = "invoke",
        done_event_name: str = "done",
        on_user_not_found: str = "leave_scheduled",
        clock: Callable[[], int] = now_millis,
        timer: Callable[[], float] = time.perf_counter,
    ):
        if on_user_not_found not in USER_NOT_FOUND_POLICIES:
            raise PolicyViolationError(f"on_user_not_found must be one of {USER_NOT_FOUND_POLICIES}")
        self._store = store
        self._users = users
        self._client = client
        self._invoke_event_name = invoke_event_name
        self._done_event_name = done_event_name
        self._on_user_not_found = on_user_not_found
        self._clock = clock
        self._timer = timer

    @property
    def event_names(self) -> tuple[str, ...]:
        return (self._invoke_event_name,)

    def process_event(self, event: Event) -> EventResult:
        timer = StopWatch(timer=self._timer)
        name = record_name_of(event)

        try:
            record = self._store.find_by_name(name)
        except StorageUnavailableError as e:
            return self._failed(name, f"Invocation data for '{name}' could not be read: {e}", timer)

        if record is None:
            return self._skipped(name, f"Skipping processing for '{name}'.  Invocation data not found.", timer)
        problem = eligibility_problem(record)
        if problem is not None:
            return self._skipped(name, f"Skipping processing for '{name}'.  Invocation {problem}.", timer)

        try:
            user = self._users.find_user_by_username(record.username)
        except InvokeBenchRuntimeError as e:
            return self._failed(name, f"User data lookup failed for {record.username}: {e}", timer)
        if user is None:
            return self._user_not_found(name, record.username, timer)

        timer.resume()
        status = self._client.invoke(user, record.message)
        timer.suspend()

        if status.ok:
            return self._record_created(name, timer)
        return self._record_failed(name, status, timer)

    def _record_created(self, name: str, timer: StopWatch) -> EventResult:
        try:
            updated = self._store.set_state(name, InvocationState.CREATED, expected_state=InvocationState.SCHEDULED)
        except StorageUnavailableError as e:
            logger.error("invocation_bookkeeping_lost", extra={"event": "invocation_bookkeeping_lost", "record_name": name})
            raise BookkeepingLostError(name) from e
        if not updated:
            logger.error("invocation_bookkeeping_lost", extra={"event": "invocation_bookkeeping_lost", "record_name": name})
            raise BookkeepingLostError(name)

        logger.info(
            "invocation_created",
            extra={"event": "invocation_created", "record_name": name, "state": InvocationState.CREATED.value},
        )
        # The done event has no further processors attached.
        done = Event(self._done_event_name, self._clock(), RecordName(name))
        return EventResult(
            message=f"Invocation {name} completed.",
            events=(done,),
            elapsed_ms=timer.elapsed_ms,
        )

    def _record_failed(self, name: str, status: CallStatus, timer: StopWatch) -> EventResult:
        msg = (
            f"Web Script call failed, ReST-call resulted in status:{status.status_code} "
            f"with error {status.reason_phrase}"
        )
        self._mark_failed(name)
        logger.info(
            "invocation_failed",
            extra={"event": "invocation_failed", "record_name": name, "status_code": status.status_code},
        )
        return EventResult(message=msg, success=False, elapsed_ms=timer.elapsed_ms)

    def _user_not_found(self, name: str, username: str, timer: StopWatch) -> EventResult:
        if self._on_user_not_found == "mark_failed":
            self._mark_failed(name)
        return self._skipped(name, f"User data not found in local database: {username}", timer)

    def _mark_failed(self, name: str) -> None:
        try:
            applied = self._store.set_state(name, InvocationState.FAILED, expected_state=InvocationState.SCHEDULED)
        except StorageUnavailableError:
            logger.warning(
                "invocation_mark_failed_error",
                extra={"event": "invocation_mark_failed_error", "record_name": name},
                exc_info=True,
            )
            return
        if not applied:
            logger.warning("invocation_mark_failed_missed", extra={"event": "invocation_mark_failed_missed", "record_name": name})

    def _skipped(self, name: str, message: str, timer: StopWatch) -> EventResult:
        logger.info(message, extra={"event": "invocation_skipped", "record_name": name})
        return EventResult(message=message, success=False, elapsed_ms=timer.elapsed_ms)

    def _failed(self, name: str, message: str, timer: StopWatch) -> EventResult:
        logger.warning(message, extra={"event": "invocation_unavailable", "record_name": name})
        return EventResult(message=message, success=False, elapsed_ms=timer.elapsed_ms)
