"""FastAPI surface for the InvokeBench Core Runtime.

The driving scheduler delivers one event per `POST /events` call and enqueues
the events returned in the response. Records can be inspected by name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import Body, FastAPI
from fastapi.responses import JSONResponse

from config.logging import apply_logging_config
from config.settings import RuntimeConfig, default_config_paths, load_runtime_config
from errors import (
    BookkeepingLostError,
    ConflictError,
    EventPayloadError,
    NotFoundError,
    PolicyViolationError,
    SchemaValidationError,
    StorageUnavailableError,
)
from events.model import EventProcessor, PayloadCodec
from executor.http_client import WebScriptClient
from executor.invoker import InvokeProcessor
from registry.schema_validator import SchemaValidator
from scheduler.batch import ScheduleInvocationsProcessor
from storage.interfaces import InvocationStore
from storage.sqlite import SQLiteStores
from users.service import UserDataService, YamlUserDataService

logger = logging.getLogger(__name__)


@dataclass
class AppComponents:
    store: InvocationStore
    codec: PayloadCodec
    schema_validator: SchemaValidator
    processors: dict[str, EventProcessor]
    terminal_events: frozenset[str]
    client: WebScriptClient | None = field(default=None)

    def distinct_processors(self) -> list[EventProcessor]:
        """Each processor once, however many event names it handles."""
        unique: dict[int, EventProcessor] = {}
        for processor in self.processors.values():
            unique.setdefault(id(processor), processor)
        return list(unique.values())

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


def build_components(
    runtime: RuntimeConfig,
    users: UserDataService,
    *,
    client: WebScriptClient | None = None,
    store: InvocationStore | None = None,
) -> AppComponents:
    if store is None:
        store = SQLiteStores(runtime.storage.sqlite_path, table=runtime.storage.table).invocations
    if client is None:
        client = WebScriptClient(
            base_url=runtime.worker.base_url,
            path=runtime.worker.path,
            timeout_seconds=runtime.worker.timeout_seconds,
        )

    scheduler = ScheduleInvocationsProcessor(
        store=store,
        users=users,
        settings=runtime.scheduler,
        run_id=runtime.run_id,
        invoke_event_name=runtime.events.invoke,
    )
    invoker = InvokeProcessor(
        store=store,
        users=users,
        client=client,
        invoke_event_name=runtime.events.invoke,
        done_event_name=runtime.events.done,
        on_user_not_found=runtime.worker.on_user_not_found,
    )

    processors: dict[str, EventProcessor] = {}
    for p in (scheduler, invoker):
        for name in p.event_names:
            processors[name] = p

    codec = PayloadCodec(
        progress_events=[runtime.scheduler.event_name],
        record_events=[runtime.events.invoke, runtime.events.done],
    )
    return AppComponents(
        store=store,
        codec=codec,
        schema_validator=SchemaValidator.load_from_dir(runtime.schemas_dir),
        processors=processors,
        terminal_events=frozenset({runtime.events.done}),
        client=client,
    )


def _error_payload(err: Exception) -> dict[str, Any]:
    if isinstance(err, SchemaValidationError):
        return {
            "error": "SCHEMA_VALIDATION_ERROR",
            "kind": err.kind,
            "violations": [{"path": v.path, "message": v.message} for v in err.violations],
        }
    if isinstance(err, EventPayloadError):
        return {"error": "EVENT_PAYLOAD_ERROR", "event_name": err.event_name, "message": str(err)}
    if isinstance(err, PolicyViolationError):
        return {"error": "POLICY_VIOLATION", "message": str(err), "details": err.details}
    if isinstance(err, ConflictError):
        return {"error": "CONFLICT", "message": str(err), "details": err.details}
    if isinstance(err, NotFoundError):
        return {"error": "NOT_FOUND", "resource_type": err.resource_type, "resource_id": err.resource_id}
    if isinstance(err, StorageUnavailableError):
        return {"error": "STORAGE_UNAVAILABLE", "operation": err.operation, "message": str(err)}
    if isinstance(err, BookkeepingLostError):
        return {"error": "BOOKKEEPING_LOST", "record_name": err.record_name, "message": str(err)}
    return {"error": "INTERNAL", "message": str(err)}


def _build_components() -> AppComponents:
    runtime_cfg_path, logging_cfg_path, users_cfg_path = default_config_paths()

    runtime = load_runtime_config(runtime_cfg_path)
    apply_logging_config(logging_cfg_path)
    users = YamlUserDataService.load(users_cfg_path)

    return build_components(runtime, users)


app = FastAPI(title="InvokeBench Core Runtime", version="0.1.0")


@app.on_event("startup")
def _startup() -> None:
    # Fail closed at startup if config, users or schemas cannot be loaded.
    app.state.components = _build_components()
    logger.info("runtime_started", extra={"event": "runtime_started"})


@app.on_event("shutdown")
def _shutdown() -> None:
    components = getattr(app.state, "components", None)
    if components is not None:
        components.close()


@app.exception_handler(SchemaValidationError)
def _schema_validation_handler(_req, exc: SchemaValidationError):
    return JSONResponse(status_code=422, content=_error_payload(exc))


@app.exception_handler(EventPayloadError)
def _event_payload_handler(_req, exc: EventPayloadError):
    return JSONResponse(status_code=400, content=_error_payload(exc))


@app.exception_handler(PolicyViolationError)
def _policy_violation_handler(_req, exc: PolicyViolationError):
    return JSONResponse(status_code=403, content=_error_payload(exc))


@app.exception_handler(ConflictError)
def _conflict_handler(_req, exc: ConflictError):
    return JSONResponse(status_code=409, content=_error_payload(exc))


@app.exception_handler(NotFoundError)
def _not_found_handler(_req, exc: NotFoundError):
    return JSONResponse(status_code=404, content=_error_payload(exc))


@app.exception_handler(StorageUnavailableError)
def _storage_unavailable_handler(_req, exc: StorageUnavailableError):
    return JSONResponse(status_code=503, content=_error_payload(exc))


@app.exception_handler(BookkeepingLostError)
def _bookkeeping_lost_handler(_req, exc: BookkeepingLostError):
    logger.error(
        "bookkeeping_lost",
        extra={"event": "bookkeeping_lost", "record_name": exc.record_name, "code": "BOOKKEEPING_LOST"},
    )
    return JSONResponse(status_code=500, content=_error_payload(exc))


@app.exception_handler(Exception)
def _unhandled_handler(_req, exc: Exception):
    logger.exception("unhandled_error", extra={"event": "unhandled_error"})
    return JSONResponse(status_code=500, content=_error_payload(exc))


def _components() -> AppComponents:
    return app.state.components


@app.get("/health")
def health() -> dict[str, Any]:
    """Health check for runtime availability."""
    return {"status": "ok"}


@app.post("/events")
def deliver_event(event: dict[str, Any] = Body(...)) -> dict[str, Any]:
    comps = _components()
    comps.schema_validator.validate("Event", event)
    ev = comps.codec.from_wire(event)

    if ev.name in comps.terminal_events:
        return {"success": True, "message": f"Event '{ev.name}' is terminal.", "elapsed_ms": 0, "events": []}

    processor = comps.processors.get(ev.name)
    if processor is None:
        raise NotFoundError("EventProcessor", ev.name)

    result = processor.process_event(ev)
    return {
        "success": result.success,
        "message": result.message,
        "elapsed_ms": result.elapsed_ms,
        "events": [PayloadCodec.to_wire(e) for e in result.events],
    }


@app.get("/invocations/{name}")
def get_invocation(name: str) -> dict[str, Any]:
    record = _components().store.find_by_name(name)
    if record is None:
        raise NotFoundError("Invocation", name)
    return {
        "invocation": {
            "name": record.name,
            "username": record.username,
            "message": record.message,
            "state": record.state.value,
        }
    }
