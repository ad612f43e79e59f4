"""JSON snapshot persistence for per-user sync state."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from learnsync.errors import StatePersistenceError
from learnsync.user_state import RECENT_SIGN_IN_LIMIT, UserRecord, UserStateStore, require_identity


def test_missing_identity_returns_default_record(store: UserStateStore, state_path: Path) -> None:
    record = store.get("nobody@example.com")
    assert record.identity == "nobody@example.com"
    assert record.sign_in_count == 0
    assert record.total_enrollment_count == 0
    assert record.enrolled_courses == {}
    assert record.bundle_history == []
    assert not state_path.exists()


def test_put_persists_full_snapshot(store: UserStateStore, state_path: Path) -> None:
    first = UserRecord(identity="a@example.com", sign_in_count=2)
    first.enroll("1", "Intro")
    store.put(first)
    store.put(UserRecord(identity="b@example.com", bundle_history=["Starter"]))

    raw = json.loads(state_path.read_text(encoding="utf-8"))
    assert set(raw) == {"a@example.com", "b@example.com"}
    assert raw["a@example.com"]["total_enrollment_count"] == 1
    assert raw["a@example.com"]["enrolled_courses"]["1"]["course_name"] == "Intro"

    reloaded = UserStateStore(path=state_path, mode="json")
    assert reloaded.get("a@example.com").course_names() == ["Intro"]
    assert reloaded.get("b@example.com").current_bundle == "Starter"
    assert reloaded.identities() == ["a@example.com", "b@example.com"]


def test_returned_records_are_copies(store: UserStateStore) -> None:
    stored = store.put(UserRecord(identity="a@example.com"))
    stored.enroll("9", "Detached")
    assert store.get("a@example.com").enrolled_courses == {}


def test_mutate_skips_write_when_unchanged(store: UserStateStore, state_path: Path) -> None:
    record = store.mutate("a@example.com", lambda _: False)
    assert record.sign_in_count == 0
    assert not state_path.exists()

    def _sign_in(target: UserRecord) -> bool:
        target.record_sign_in()
        return True

    store.mutate("a@example.com", _sign_in)
    assert store.mutate("a@example.com", _sign_in).sign_in_count == 2
    assert state_path.exists()


def test_corrupt_file_starts_empty(state_path: Path) -> None:
    state_path.write_text("{not json", encoding="utf-8")
    store = UserStateStore(path=state_path, mode="json")
    assert store.get("a@example.com").total_enrollment_count == 0
    assert store.identities() == []

    store.put(UserRecord(identity="a@example.com", sign_in_count=1))
    assert json.loads(state_path.read_text(encoding="utf-8"))["a@example.com"]["sign_in_count"] == 1


def test_non_mapping_snapshot_starts_empty(state_path: Path) -> None:
    state_path.write_text(json.dumps(["a@example.com"]), encoding="utf-8")
    store = UserStateStore(path=state_path, mode="json")
    assert store.identities() == []


def test_unparsable_record_is_skipped(state_path: Path) -> None:
    state_path.write_text(
        json.dumps(
            {
                "good@example.com": {"identity": "good@example.com", "sign_in_count": 3},
                "bad@example.com": {"identity": "bad@example.com", "sign_in_count": -4},
            }
        ),
        encoding="utf-8",
    )
    store = UserStateStore(path=state_path, mode="json")
    assert store.identities() == ["good@example.com"]
    assert store.get("good@example.com").sign_in_count == 3


def test_write_failure_raises_and_keeps_memory(store: UserStateStore, monkeypatch) -> None:
    def _fail(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _fail)
    with pytest.raises(StatePersistenceError):
        store.put(UserRecord(identity="a@example.com", sign_in_count=5))
    assert store.get("a@example.com").sign_in_count == 5


def test_identities_do_not_leak(store: UserStateStore) -> None:
    def _enroll(course_id: str):
        def _apply(record: UserRecord) -> bool:
            return record.enroll(course_id, f"Course {course_id}")

        return _apply

    store.mutate("u1@example.com", _enroll("1"))
    store.mutate("u1@example.com", _enroll("2"))
    store.mutate("u2@example.com", _enroll("3"))

    assert sorted(store.get("u1@example.com").enrolled_courses) == ["1", "2"]
    assert list(store.get("u2@example.com").enrolled_courses) == ["3"]
    assert store.get("u2@example.com").total_enrollment_count == 1


def test_delete(store: UserStateStore) -> None:
    store.put(UserRecord(identity="a@example.com"))
    assert store.delete("a@example.com") is True
    assert store.delete("a@example.com") is False
    assert store.identities() == []


def test_identity_must_not_be_blank(store: UserStateStore) -> None:
    with pytest.raises(ValueError):
        store.get("   ")
    assert require_identity("Mixed@Example.com") == "Mixed@Example.com"


def test_enrollment_count_tracks_course_map() -> None:
    record = UserRecord.model_validate(
        {
            "identity": "a@example.com",
            "total_enrollment_count": 10,
            "enrolled_courses": {"1": {"course_id": "1", "course_name": "Intro"}},
        }
    )
    assert record.total_enrollment_count == 1
    assert record.enroll("1", "Intro") is False
    assert record.enroll("2", "") is True
    assert record.course_names() == ["Intro", "2"]
    assert record.total_enrollment_count == 2


def test_old_bundles_exclude_current() -> None:
    record = UserRecord(identity="a@example.com", bundle_history=["B1", "B2", "B3", "B2", "B1"])
    assert record.current_bundle == "B1"
    assert record.old_bundles == ["B2", "B3"]


def test_sign_in_redelivery_counted_once() -> None:
    record = UserRecord(identity="a@example.com")
    assert record.record_sign_in("evt-1") is True
    assert record.record_sign_in("evt-1") is False
    assert record.record_sign_in(None) is True
    assert record.sign_in_count == 2

    for index in range(2, 30):
        record.record_sign_in(f"evt-{index}")
    assert len(record.recent_sign_in_ids) == RECENT_SIGN_IN_LIMIT
    assert "evt-1" not in record.recent_sign_in_ids
    assert record.recent_sign_in_ids[-1] == "evt-29"


def test_sync_retry_state_persists(store: UserStateStore, state_path: Path) -> None:
    def _sign_in_and_buy(record: UserRecord) -> bool:
        record.record_sign_in("evt-1")
        record.bundle_history.append("B1")
        record.bundle_sync_pending = True
        return True

    store.mutate("a@example.com", _sign_in_and_buy)
    reloaded = UserStateStore(path=state_path, mode="json").get("a@example.com")
    assert reloaded.recent_sign_in_ids == ["evt-1"]
    assert reloaded.bundle_sync_pending is True
