import pytest
from fastapi.testclient import TestClient

from api.main import app, build_components
from config.settings import load_runtime_config
from events.model import Event
from executor.state_machine import InvocationState
from scheduler.runner import LocalEventDriver


@pytest.fixture
def make_api(runtime_yaml, users, ok_client):
    def _make(client=ok_client, store=None, extra="scheduler:\n  number_of_invocations: 3\n  batch_size: 2\n"):
        runtime = load_runtime_config(runtime_yaml(extra))
        comps = build_components(runtime, users, client=client, store=store)
        app.state.components = comps
        return TestClient(app)

    yield _make
    if hasattr(app.state, "components"):
        del app.state.components


def test_health(make_api):
    resp = make_api().get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_schedule_then_invoke_over_http(make_api, ok_client):
    api = make_api()

    resp = api.post("/events", json={"name": "scheduleInvocations"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Created 2 scheduled invocations."
    invokes = [e for e in body["events"] if e["name"] == "invoke"]
    continuation = [e for e in body["events"] if e["name"] == "scheduleInvocations"]
    assert len(invokes) == 2
    assert continuation[0]["payload"] == 2
    assert invokes[1]["scheduled_time"] - invokes[0]["scheduled_time"] == 500

    name = invokes[0]["payload"]
    assert name.startswith("test-run-")
    assert api.get(f"/invocations/{name}").json()["invocation"]["state"] == "Scheduled"

    resp = api.post("/events", json=invokes[0])
    body = resp.json()
    assert body["success"] is True
    assert body["events"][0]["name"] == "done"
    assert body["events"][0]["payload"] == name
    assert api.get(f"/invocations/{name}").json()["invocation"]["state"] == "Created"
    assert len(ok_client.calls) == 1

    resp = api.post("/events", json=continuation[0])
    body = resp.json()
    assert [e["name"] for e in body["events"]] == ["invoke"]


def test_repeated_invoke_is_skipped(make_api):
    api = make_api()
    invoke = api.post("/events", json={"name": "scheduleInvocations"}).json()["events"][0]

    api.post("/events", json=invoke)
    body = api.post("/events", json=invoke).json()

    assert body["success"] is False
    assert "not scheduled" in body["message"]


def test_done_events_are_terminal(make_api):
    body = make_api().post("/events", json={"name": "done", "payload": "test-run-x"}).json()
    assert body["success"] is True
    assert body["events"] == []


def test_unknown_invocation_is_404(make_api):
    resp = make_api().get("/invocations/nope")
    assert resp.status_code == 404
    assert resp.json()["error"] == "NOT_FOUND"


def test_unknown_event_name_is_404(make_api):
    resp = make_api().post("/events", json={"name": "somethingElse"})
    assert resp.status_code == 404


def test_schema_violation_is_422(make_api):
    resp = make_api().post("/events", json={"name": "invoke", "payload": "x", "extra": 1})
    assert resp.status_code == 422
    assert resp.json()["error"] == "SCHEMA_VALIDATION_ERROR"


def test_wrong_payload_shape_is_400(make_api):
    resp = make_api().post("/events", json={"name": "invoke", "payload": 5})
    assert resp.status_code == 400
    assert resp.json()["error"] == "EVENT_PAYLOAD_ERROR"


def test_bookkeeping_loss_is_500(make_api, store, stale_store, scheduled_record):
    store.set_state(scheduled_record.name, InvocationState.CREATED, expected_state=InvocationState.SCHEDULED)
    api = make_api(store=stale_store)

    resp = api.post("/events", json={"name": "invoke", "payload": scheduled_record.name})

    assert resp.status_code == 500
    assert resp.json()["error"] == "BOOKKEEPING_LOST"
    assert resp.json()["record_name"] == scheduled_record.name


def test_processor_serving_several_names_is_driven_once(runtime_yaml, users, ok_client):
    runtime = load_runtime_config(runtime_yaml("scheduler:\n  number_of_invocations: 3\n  batch_size: 2\n"))
    comps = build_components(runtime, users, client=ok_client)
    comps.processors["scheduleInvocationsAlias"] = comps.processors["scheduleInvocations"]

    distinct = comps.distinct_processors()
    assert len(distinct) == 2

    driver = LocalEventDriver(distinct)
    driver.submit(Event("scheduleInvocations"))
    report = driver.run_until_idle()
    assert report.failed == 0
    assert len(report.terminal) == 3
