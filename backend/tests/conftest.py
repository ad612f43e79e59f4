from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pytest

from learnsync.config import get_settings
from learnsync.db.session import dispose_engine, ensure_schema
from learnsync.errors import OrttoSyncError
from learnsync.ortto import PersonUpdate
from learnsync.telemetry import TelemetryEvent, clear_listeners, register_listener
from learnsync.user_state import UserStateStore


class RecordingClient:
    """In-memory stand-in for the Ortto client that records each merge call."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[List[PersonUpdate]] = []

    async def merge_people(self, updates: Sequence[PersonUpdate]) -> Dict[str, Any]:
        self.calls.append(list(updates))
        if self.fail:
            raise OrttoSyncError("ortto unavailable")
        return {"people": [{"status": "merged"} for _ in updates]}

    def last_fields(self) -> Optional[Dict[str, Any]]:
        if not self.calls:
            return None
        return self.calls[-1][-1].to_fields()


@pytest.fixture
def client() -> RecordingClient:
    return RecordingClient()


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "user_state.json"


@pytest.fixture
def store(state_path: Path) -> UserStateStore:
    return UserStateStore(path=state_path, mode="json")


@pytest.fixture
def telemetry() -> Iterator[List[TelemetryEvent]]:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    yield events
    clear_listeners()


@pytest.fixture
def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    url = f"sqlite:///{tmp_path / 'learnsync.sqlite'}"
    monkeypatch.setenv("LEARNSYNC_DATABASE_URL", url)
    get_settings.cache_clear()
    dispose_engine()
    ensure_schema()
    yield url
    dispose_engine()
    get_settings.cache_clear()


def enrollment_envelope(email: str, course_id: int, course_name: str, **extra: Any) -> Dict[str, Any]:
    return {
        "id": extra.pop("id", None),
        "resource": "enrollment",
        "action": "created",
        "payload": {
            "id": course_id * 100,
            "user": {"id": 7, "email": email, "first_name": "Ada", "last_name": "Lovelace"},
            "course": {"id": course_id, "name": course_name},
            **extra,
        },
    }


def order_envelope(email: str, bundle: str) -> Dict[str, Any]:
    return {
        "resource": "order",
        "action": "created",
        "payload": {
            "user": {"email": email, "first_name": "Ada"},
            "bundle_name": bundle,
        },
    }


def user_envelope(action: str, email: str, **user: Any) -> Dict[str, Any]:
    return {
        "resource": "user",
        "action": action,
        "payload": {"email": email, **user},
    }
