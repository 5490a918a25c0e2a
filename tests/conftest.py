"""InvokeBench runtime test configuration."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from executor.http_client import CallStatus
from executor.state_machine import InvocationState
from storage.interfaces import InvocationRecord, InvocationStore
from storage.sqlite import SQLiteStores
from users.service import UserData, YamlUserDataService

REPO_ROOT = Path(__file__).resolve().parents[1]


class FakeWebScriptClient:
    """Records calls and answers every one with the configured status."""

    def __init__(self, status: CallStatus | None = None):
        self.status = status or CallStatus(200, "OK")
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def invoke(self, user: UserData, message: str) -> CallStatus:
        self.calls.append((user.username, message))
        return self.status

    def close(self) -> None:
        self.closed = True


class StaleReadStore(InvocationStore):
    """Reads always see the record as Scheduled, as a concurrent worker would before the other one finished."""

    def __init__(self, inner: InvocationStore):
        self.inner = inner

    def create(self, record: InvocationRecord) -> bool:
        return self.inner.create(record)

    def find_by_name(self, name: str) -> InvocationRecord | None:
        record = self.inner.find_by_name(name)
        if record is None:
            return None
        return record.with_state(InvocationState.SCHEDULED)

    def set_state(self, name, state, *, expected_state=None) -> bool:
        return self.inner.set_state(name, state, expected_state=expected_state)


@pytest.fixture
def sqlite_path(tmp_path):
    return tmp_path / "state" / "invokebench.sqlite"


@pytest.fixture
def store(sqlite_path):
    return SQLiteStores(sqlite_path).invocations


@pytest.fixture
def stale_store(store):
    return StaleReadStore(store)


@pytest.fixture
def users():
    return YamlUserDataService(
        [UserData("alice@example.com", "alice-pw"), UserData("bob@example.com", "bob-pw")],
        rng=random.Random(7),
    )


@pytest.fixture
def ok_client():
    return FakeWebScriptClient()


@pytest.fixture
def error_client():
    return FakeWebScriptClient(CallStatus(500, "Internal Server Error"))


@pytest.fixture
def scheduled_record(store):
    record = InvocationRecord(
        name="run-1-0001",
        username="alice@example.com",
        message="Message 0000001",
        state=InvocationState.SCHEDULED,
    )
    assert store.create(record)
    return record


@pytest.fixture
def runtime_yaml(tmp_path):
    """Writes a runtime.yaml into tmp_path and returns its path."""

    def _write(extra: str = "") -> Path:
        schemas_dir = REPO_ROOT / "runtime" / "schemas"
        path = tmp_path / "config" / "runtime.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            "runtime:\n"
            "  run_id: test-run\n"
            "storage:\n"
            "  sqlite:\n"
            "    path: ../state/test.sqlite\n"
            "schemas:\n"
            f"  dir: {schemas_dir}\n" + extra,
            encoding="utf-8",
        )
        return path

    return _write
