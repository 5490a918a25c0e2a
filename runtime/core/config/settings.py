"""Configuration loader for the core runtime.

Rules:
- Fail closed when config is missing or invalid.
- All relative paths in runtime.yaml are resolved relative to runtime.yaml's directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from errors import PolicyViolationError

CREATE_FAILURE_POLICIES = ("skip", "stop_batch")
USER_NOT_FOUND_POLICIES = ("leave_scheduled", "mark_failed")


@dataclass(frozen=True)
class ServiceConfig:
    host: str
    port: int


@dataclass(frozen=True)
class StorageConfig:
    driver: str
    sqlite_path: Path
    table: str


@dataclass(frozen=True)
class SchedulerConfig:
    event_name: str
    number_of_invocations: int
    time_between_invocations_ms: int
    message_pattern: str
    batch_size: int = 100
    on_create_failure: str = "skip"


@dataclass(frozen=True)
class WorkerConfig:
    base_url: str
    path: str
    timeout_seconds: float
    on_user_not_found: str = "leave_scheduled"


@dataclass(frozen=True)
class EventNames:
    invoke: str
    done: str


@dataclass(frozen=True)
class RuntimeConfig:
    run_id: str
    service: ServiceConfig
    storage: StorageConfig
    scheduler: SchedulerConfig
    worker: WorkerConfig
    events: EventNames
    schemas_dir: Path
    config_dir: Path


def load_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise PolicyViolationError(f"Missing required config file: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise PolicyViolationError(f"Invalid YAML root object in config file: {path}")
    return data


def _resolve_path(base_dir: Path, raw: str) -> Path:
    p = Path(raw)
    if p.is_absolute():
        return p
    return (base_dir / p).resolve()


def validate_message_pattern(pattern: str) -> None:
    """A pattern containing '%' must format exactly one integer."""
    if "%" not in pattern:
        return
    try:
        pattern % 0
    except (TypeError, ValueError) as e:
        raise PolicyViolationError(f"Invalid message pattern {pattern!r}: {e}") from e


def validate_scheduler_config(cfg: SchedulerConfig) -> None:
    if not cfg.event_name:
        raise PolicyViolationError("scheduler.event_name must be non-empty")
    if cfg.batch_size < 1:
        raise PolicyViolationError(f"scheduler.batch_size must be >= 1 (got {cfg.batch_size})")
    if cfg.number_of_invocations < 0:
        raise PolicyViolationError(f"scheduler.number_of_invocations must be >= 0 (got {cfg.number_of_invocations})")
    if cfg.time_between_invocations_ms < 0:
        raise PolicyViolationError(
            f"scheduler.time_between_invocations_ms must be >= 0 (got {cfg.time_between_invocations_ms})"
        )
    if cfg.on_create_failure not in CREATE_FAILURE_POLICIES:
        raise PolicyViolationError(f"scheduler.on_create_failure must be one of {CREATE_FAILURE_POLICIES}")
    validate_message_pattern(cfg.message_pattern)


def validate_worker_config(cfg: WorkerConfig) -> None:
    if cfg.on_user_not_found not in USER_NOT_FOUND_POLICIES:
        raise PolicyViolationError(f"worker.on_user_not_found must be one of {USER_NOT_FOUND_POLICIES}")
    if cfg.timeout_seconds <= 0:
        raise PolicyViolationError(f"worker.timeout_seconds must be > 0 (got {cfg.timeout_seconds})")


def load_runtime_config(runtime_config_path: Path) -> RuntimeConfig:
    cfg_dir = runtime_config_path.parent.resolve()
    raw = load_yaml_mapping(runtime_config_path)

    runtime_raw = raw.get("runtime", {})
    service_raw = raw.get("service", {})
    storage_raw = raw.get("storage", {})
    schemas_raw = raw.get("schemas", {})
    scheduler_raw = raw.get("scheduler", {})
    worker_raw = raw.get("worker", {})
    events_raw = raw.get("events", {})

    service = ServiceConfig(
        host=str(service_raw.get("host", "0.0.0.0")),
        port=int(service_raw.get("port", 8080)),
    )

    sqlite_raw = storage_raw.get("sqlite", {})
    storage = StorageConfig(
        driver=str(storage_raw.get("driver", "sqlite")),
        sqlite_path=_resolve_path(cfg_dir, str(sqlite_raw.get("path", "../state/invokebench.sqlite"))),
        table=str(sqlite_raw.get("table", "ws_invocations")),
    )
    if storage.driver != "sqlite":
        raise PolicyViolationError(f"Unsupported storage driver: {storage.driver}")

    scheduler = SchedulerConfig(
        event_name=str(scheduler_raw.get("event_name", "scheduleInvocations")),
        number_of_invocations=int(scheduler_raw.get("number_of_invocations", 100)),
        time_between_invocations_ms=int(scheduler_raw.get("time_between_invocations_ms", 500)),
        message_pattern=str(scheduler_raw.get("message_pattern", "Message %07d")),
        batch_size=int(scheduler_raw.get("batch_size", 100)),
        on_create_failure=str(scheduler_raw.get("on_create_failure", "skip")),
    )
    validate_scheduler_config(scheduler)

    worker = WorkerConfig(
        base_url=str(worker_raw.get("base_url", "http://localhost:8080/alfresco")),
        path=str(worker_raw.get("path", "/service/sample/helloworld")),
        timeout_seconds=float(worker_raw.get("timeout_seconds", 30)),
        on_user_not_found=str(worker_raw.get("on_user_not_found", "leave_scheduled")),
    )
    validate_worker_config(worker)

    events = EventNames(
        invoke=str(events_raw.get("invoke", "invoke")),
        done=str(events_raw.get("done", "done")),
    )
    if len({events.invoke, events.done, scheduler.event_name}) != 3:
        raise PolicyViolationError("Event names for scheduler, invoke and done must be distinct")

    return RuntimeConfig(
        run_id=str(runtime_raw.get("run_id", "invokebench")),
        service=service,
        storage=storage,
        scheduler=scheduler,
        worker=worker,
        events=events,
        schemas_dir=_resolve_path(cfg_dir, str(schemas_raw.get("dir", "../schemas"))),
        config_dir=cfg_dir,
    )


def _env_path(name: str) -> Path | None:
    v = os.environ.get(name)
    if not v:
        return None
    return Path(v)


def default_config_paths() -> tuple[Path, Path, Path]:
    # Default to paths relative to the runtime working directory (runtime/core).
    runtime_path = _env_path("INVOKEBENCH_RUNTIME_CONFIG") or Path.cwd() / "config" / "runtime.yaml"
    logging_path = _env_path("INVOKEBENCH_LOGGING_CONFIG") or Path.cwd() / "config" / "logging.yaml"
    users_path = _env_path("INVOKEBENCH_USERS_CONFIG") or Path.cwd() / "config" / "users.yaml"
    return runtime_path, logging_path, users_path
