import itertools
from unittest.mock import MagicMock

import pytest

from config.settings import SchedulerConfig
from errors import NotFoundError, PolicyViolationError
from events.model import Event, ProgressCount, RecordName
from executor.state_machine import InvocationState
from scheduler.batch import ScheduleInvocationsProcessor, render_message
from users.service import YamlUserDataService

START = 1_000_000


def _settings(**overrides):
    values = dict(
        event_name="scheduleInvocations",
        number_of_invocations=250,
        time_between_invocations_ms=50,
        message_pattern="Message %05d",
        batch_size=100,
    )
    values.update(overrides)
    return SchedulerConfig(**values)


def _processor(store, users, **overrides):
    id_factory = overrides.pop("id_factory", None)
    kwargs = {}
    if id_factory is not None:
        kwargs["id_factory"] = id_factory
    return ScheduleInvocationsProcessor(
        store=store,
        users=users,
        settings=_settings(**overrides),
        run_id="run-1",
        invoke_event_name="invoke",
        clock=lambda: START,
        **kwargs,
    )


def _split(result):
    invokes = [e for e in result.events if e.name == "invoke"]
    continuations = [e for e in result.events if e.name == "scheduleInvocations"]
    return invokes, continuations


def test_batches_are_bounded_and_chain_until_target(store, users):
    processor = _processor(store, users)

    first = processor.process_event(Event("scheduleInvocations"))
    invokes, cont = _split(first)
    assert len(invokes) == 100
    assert [c.payload for c in cont] == [ProgressCount(100)]
    assert first.message == "Created 100 scheduled invocations."

    second = processor.process_event(cont[0])
    invokes, cont = _split(second)
    assert len(invokes) == 100
    assert [c.payload for c in cont] == [ProgressCount(200)]

    third = processor.process_event(cont[0])
    invokes, cont = _split(third)
    assert len(invokes) == 50
    assert cont == []
    assert third.message == "Created 250 scheduled invocations."


def test_pacing_is_cumulative_across_batches(store, users):
    processor = _processor(store, users)

    times = []
    event = Event("scheduleInvocations")
    while event is not None:
        result = processor.process_event(event)
        invokes, cont = _split(result)
        times.extend(e.scheduled_time for e in invokes)
        event = cont[0] if cont else None

    assert times == [START + k * 50 for k in range(1, 251)]


def test_continuation_is_timestamped_at_last_invocation(store, users):
    result = _processor(store, users).process_event(Event("scheduleInvocations"))
    invokes, cont = _split(result)
    assert cont[0].scheduled_time == invokes[-1].scheduled_time == START + 100 * 50


def test_start_event_time_is_used_when_set(store, users):
    result = _processor(store, users, number_of_invocations=2).process_event(
        Event("scheduleInvocations", scheduled_time=5_000)
    )
    invokes, _ = _split(result)
    assert [e.scheduled_time for e in invokes] == [5_050, 5_100]


def test_every_invoke_event_names_a_scheduled_record(store, users):
    result = _processor(store, users, number_of_invocations=10).process_event(Event("scheduleInvocations"))
    invokes, cont = _split(result)
    assert cont == []
    assert len({e.payload.name for e in invokes}) == 10

    for e in invokes:
        assert isinstance(e.payload, RecordName)
        assert e.payload.name.startswith("run-1-")
        record = store.find_by_name(e.payload.name)
        assert record.state is InvocationState.SCHEDULED
        assert record.username in ("alice@example.com", "bob@example.com")


def test_message_numbering_follows_total_count(store, users):
    result = _processor(store, users, number_of_invocations=8).process_event(Event("scheduleInvocations"))
    invokes, _ = _split(result)
    assert store.find_by_name(invokes[7].payload.name).message == "Message 00007"


def test_static_message_is_used_verbatim(store, users):
    result = _processor(store, users, number_of_invocations=3, message_pattern="static-text").process_event(
        Event("scheduleInvocations")
    )
    invokes, _ = _split(result)
    assert {store.find_by_name(e.payload.name).message for e in invokes} == {"static-text"}


def test_render_message():
    assert render_message("Message %05d", 7) == "Message 00007"
    assert render_message("static-text", 7) == "static-text"


def test_target_already_reached_schedules_nothing(store, users):
    result = _processor(store, users).process_event(Event("scheduleInvocations", payload=ProgressCount(250)))
    assert result.events == ()
    assert result.message == "Created 250 scheduled invocations."


def test_duplicate_name_skips_invoke_and_continues(store, users):
    ids = iter(["same", "same", "other"])
    processor = _processor(store, users, number_of_invocations=3, id_factory=lambda: next(ids))

    result = processor.process_event(Event("scheduleInvocations"))
    invokes, cont = _split(result)
    assert [e.payload.name for e in invokes] == ["run-1-same", "run-1-other"]
    assert cont == []
    assert "Skipped 1" in result.message


def test_stop_batch_policy_ends_batch_and_reschedules(users):
    store = MagicMock()
    store.create.side_effect = [True, False, True]
    counter = itertools.count()
    processor = _processor(
        store,
        users,
        number_of_invocations=3,
        on_create_failure="stop_batch",
        id_factory=lambda: next(counter),
    )

    result = processor.process_event(Event("scheduleInvocations"))
    invokes, cont = _split(result)
    assert len(invokes) == 1
    assert [c.payload for c in cont] == [ProgressCount(2)]
    assert cont[0].scheduled_time == START + 2 * 50
    assert store.create.call_count == 2


def test_missing_users_skip_every_item(store):
    processor = _processor(store, YamlUserDataService([]), number_of_invocations=3)
    result = processor.process_event(Event("scheduleInvocations"))
    assert result.events == ()
    assert "Skipped 3" in result.message


def test_all_failed_creates_report_nothing_created(users):
    store = MagicMock()
    store.create.return_value = False
    counter = itertools.count()
    processor = _processor(store, users, number_of_invocations=3, id_factory=lambda: next(counter))

    result = processor.process_event(Event("scheduleInvocations"))
    assert result.events == ()
    assert result.message == (
        "Created 0 of 3 scheduled invocations (progress 3/3). Skipped 3 that could not be stored."
    )


def test_partial_failure_reports_stored_count_and_progress(store, users):
    ids = iter(["same", "same", "other"])
    processor = _processor(store, users, number_of_invocations=3, id_factory=lambda: next(ids))

    result = processor.process_event(Event("scheduleInvocations", START, ProgressCount(0)))
    assert result.message.startswith("Created 2 of 3 scheduled invocations (progress 3/3).")


def test_user_service_errors_are_not_fatal(store):
    users = MagicMock()
    users.get_random_user.side_effect = NotFoundError("UserData", "<any>")
    result = _processor(store, users, number_of_invocations=2).process_event(Event("scheduleInvocations"))
    assert result.events == ()


@pytest.mark.parametrize(
    "overrides",
    [
        {"batch_size": 0},
        {"number_of_invocations": -1},
        {"time_between_invocations_ms": -5},
        {"message_pattern": "%s-%s"},
        {"message_pattern": "100%"},
        {"on_create_failure": "retry"},
    ],
)
def test_invalid_settings_are_rejected(store, users, overrides):
    with pytest.raises(PolicyViolationError):
        _processor(store, users, **overrides)
