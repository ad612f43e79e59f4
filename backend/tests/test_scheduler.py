"""Enrollment dedup and debounce behaviour."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from conftest import RecordingClient, enrollment_envelope
from learnsync.events import EnrollmentEvent, EventKind, WebhookEnvelope, build_event
from learnsync.flush import BatchFlushExecutor
from learnsync.locks import IdentityLocks
from learnsync.scheduler import DebounceScheduler, FlushState
from learnsync.telemetry import TelemetryEvent
from learnsync.user_state import UserStateStore

WINDOW = 0.05


def _enrollment(email: str, course_id: int, name: str) -> EnrollmentEvent:
    envelope = WebhookEnvelope.parse(enrollment_envelope(email, course_id, name))
    event = build_event(EventKind.ENROLLMENT_CREATED, envelope)
    assert isinstance(event, EnrollmentEvent)
    return event


def _scheduler(store: UserStateStore, client: RecordingClient, window: float = WINDOW) -> DebounceScheduler:
    return DebounceScheduler(store, BatchFlushExecutor(store, client), IdentityLocks(), window_seconds=window)


def test_window_must_be_positive(store: UserStateStore, client: RecordingClient) -> None:
    with pytest.raises(ValueError):
        _scheduler(store, client, window=0)


def test_replayed_enrollment_counts_once(store: UserStateStore, client: RecordingClient, telemetry) -> None:
    async def scenario() -> List[bool]:
        scheduler = _scheduler(store, client)
        results = [
            await scheduler.enqueue(_enrollment("a@example.com", 1, "Intro")),
            await scheduler.enqueue(_enrollment("a@example.com", 1, "Intro")),
        ]
        await asyncio.sleep(WINDOW * 4)
        return results

    assert asyncio.run(scenario()) == [True, False]
    assert store.get("a@example.com").total_enrollment_count == 1
    assert len(client.calls) == 1
    names = [event.name for event in telemetry]
    assert names.count("enrollment_recorded") == 1
    assert "enrollment_duplicate" in names


def test_burst_coalesces_into_one_flush(store: UserStateStore, client: RecordingClient, telemetry) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(store, client)
        for course_id, name in [(1, "Intro"), (2, "Advanced"), (3, "Expert")]:
            await scheduler.enqueue(_enrollment("a@example.com", course_id, name))
        assert scheduler.state_of("a@example.com") is FlushState.ACCUMULATING
        assert scheduler.pending_snapshot()["a@example.com"]["queued"] == 3
        assert client.calls == []
        await asyncio.sleep(WINDOW * 4)
        assert scheduler.state_of("a@example.com") is FlushState.IDLE

    asyncio.run(scenario())
    assert len(client.calls) == 1
    fields = client.last_fields()
    assert fields is not None
    assert fields["int:cm:total-enrollments"] == 3
    assert fields["txt:cm:enrolled-courses"] == "Intro, Advanced, Expert"
    assert fields["str:cm:last-course"] == "Expert"
    assert fields["str::first"] == "Ada"
    armed = [event.payload["armed"] for event in telemetry if event.name == "enrollment_recorded"]
    assert armed == [True, False, False]
    completed = [event for event in telemetry if event.name == "flush_completed"]
    assert completed[0].payload["queued"] == 3


def test_counts_are_durable_before_flush(store: UserStateStore, client: RecordingClient, state_path) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(store, client, window=60)
        await scheduler.enqueue(_enrollment("a@example.com", 1, "Intro"))
        assert store.get("a@example.com").total_enrollment_count == 1
        await scheduler.shutdown(flush=False)

    asyncio.run(scenario())
    assert client.calls == []
    assert UserStateStore(path=state_path, mode="json").get("a@example.com").total_enrollment_count == 1


def test_counts_never_decrease(store: UserStateStore, client: RecordingClient) -> None:
    sequence = [1, 2, 2, 1, 3, 3, 2, 4]

    async def scenario() -> List[int]:
        scheduler = _scheduler(store, client)
        observed: List[int] = []
        for course_id in sequence:
            await scheduler.enqueue(_enrollment("a@example.com", course_id, f"Course {course_id}"))
            record = store.get("a@example.com")
            assert record.total_enrollment_count == len(record.enrolled_courses)
            observed.append(record.total_enrollment_count)
        await scheduler.shutdown(flush=False)
        return observed

    observed = asyncio.run(scenario())
    assert observed == sorted(observed)
    assert observed[-1] == 4


def test_failed_flush_clears_state_and_rearms(store: UserStateStore, telemetry) -> None:
    client = RecordingClient(fail=True)

    async def scenario() -> DebounceScheduler:
        scheduler = _scheduler(store, client)
        await scheduler.enqueue(_enrollment("a@example.com", 1, "Intro"))
        await asyncio.sleep(WINDOW * 4)
        assert scheduler.state_of("a@example.com") is FlushState.IDLE
        client.fail = False
        await scheduler.enqueue(_enrollment("a@example.com", 2, "Advanced"))
        await asyncio.sleep(WINDOW * 4)
        return scheduler

    asyncio.run(scenario())
    assert len(client.calls) == 2
    assert client.last_fields()["int:cm:total-enrollments"] == 2
    assert [event.name for event in telemetry if event.name.startswith("flush_")] == ["flush_failed", "flush_completed"]


def test_identities_flush_independently(store: UserStateStore, client: RecordingClient) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(store, client)
        await asyncio.gather(
            scheduler.enqueue(_enrollment("u1@example.com", 1, "Intro")),
            scheduler.enqueue(_enrollment("u2@example.com", 2, "Advanced")),
            scheduler.enqueue(_enrollment("u1@example.com", 3, "Expert")),
        )
        await asyncio.sleep(WINDOW * 4)

    asyncio.run(scenario())
    assert store.get("u1@example.com").total_enrollment_count == 2
    assert store.get("u2@example.com").total_enrollment_count == 1
    by_email = {call[0].email: call[0].to_fields() for call in client.calls}
    assert set(by_email) == {"u1@example.com", "u2@example.com"}
    assert by_email["u2@example.com"]["int:cm:total-enrollments"] == 1


def test_flush_now_skips_the_window(store: UserStateStore, client: RecordingClient) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(store, client, window=60)
        assert await scheduler.flush_now("a@example.com") is None
        await scheduler.enqueue(_enrollment("a@example.com", 1, "Intro"))
        assert await scheduler.flush_now("a@example.com") is True
        assert scheduler.state_of("a@example.com") is FlushState.IDLE
        await scheduler.shutdown()

    asyncio.run(scenario())
    assert len(client.calls) == 1


def test_shutdown_flushes_queued_identities(store: UserStateStore, client: RecordingClient) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(store, client, window=60)
        await scheduler.enqueue(_enrollment("u1@example.com", 1, "Intro"))
        await scheduler.enqueue(_enrollment("u2@example.com", 1, "Intro"))
        await scheduler.shutdown(flush=True)
        assert scheduler.pending_snapshot() == {}

    asyncio.run(scenario())
    assert sorted(call[0].email for call in client.calls) == ["u1@example.com", "u2@example.com"]


def test_shutdown_without_flush_drops_queue(store: UserStateStore, client: RecordingClient) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(store, client, window=60)
        await scheduler.enqueue(_enrollment("a@example.com", 1, "Intro"))
        await scheduler.shutdown(flush=False)
        assert scheduler.state_of("a@example.com") is FlushState.IDLE

    asyncio.run(scenario())
    assert client.calls == []
    assert store.get("a@example.com").total_enrollment_count == 1


def test_enrollment_after_shutdown_is_counted_but_not_queued(
    store: UserStateStore, client: RecordingClient, telemetry
) -> None:
    async def scenario() -> bool:
        scheduler = _scheduler(store, client, window=60)
        await scheduler.shutdown()
        novel = await scheduler.enqueue(_enrollment("a@example.com", 1, "Intro"))
        assert scheduler.pending_snapshot() == {}
        assert scheduler.state_of("a@example.com") is FlushState.IDLE
        return novel

    assert asyncio.run(scenario()) is True
    assert store.get("a@example.com").total_enrollment_count == 1
    assert client.calls == []
    unscheduled = [event for event in telemetry if event.name == "enrollment_unscheduled"]
    assert [event.payload["course_id"] for event in unscheduled] == ["1"]
