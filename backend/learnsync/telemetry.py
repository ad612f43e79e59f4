"""Structured sync events: log lines, in-process listeners and a recent-event buffer.

Every event is written as one ``TELEMETRY {...}`` log line. Listeners receive
the sanitized payload; the runtime registers a :class:`RecentEvents` buffer so
operators can inspect what the engine did for an identity without log access.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger("learnsync.telemetry")

ENROLLMENT_RECORDED = "enrollment_recorded"
ENROLLMENT_DUPLICATE = "enrollment_duplicate"
ENROLLMENT_UNSCHEDULED = "enrollment_unscheduled"
FLUSH_COMPLETED = "flush_completed"
FLUSH_FAILED = "flush_failed"
SYNC_FAILED = "sync_failed"
BUNDLE_RECORDED = "bundle_recorded"
BUNDLE_RESYNCED = "bundle_resynced"
BUNDLE_DUPLICATE = "bundle_duplicate"
WEBHOOK_IGNORED = "webhook_ignored"


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def identity(self) -> Optional[str]:
        value = self.payload.get("identity")
        return value if isinstance(value, str) else None

    def as_dict(self) -> Dict[str, Any]:
        return {"event": self.name, "emitted_at": self.emitted_at.isoformat(), **self.payload}


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> None:
    with _lock:
        _listeners.append(listener)


def unregister_listener(listener: Listener) -> None:
    with _lock:
        if listener in _listeners:
            _listeners.remove(listener)


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    event = TelemetryEvent(name=name, payload=_sanitize(fields))
    with _lock:
        listeners = list(_listeners)
    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)
    logger.info("TELEMETRY %s", json.dumps({"event": name, **event.payload}, default=str))
    return event


def enrollment_recorded(identity: str, course_id: str, *, total: int, queued: int, armed: bool) -> TelemetryEvent:
    return emit_event(
        ENROLLMENT_RECORDED,
        identity=identity,
        course_id=course_id,
        total_enrollment_count=total,
        queued=queued,
        armed=armed,
    )


def flush_finished(identity: str, queued: int, *, total: Optional[int] = None, error: Optional[BaseException] = None) -> TelemetryEvent:
    """``flush_completed`` when ``error`` is ``None``, otherwise ``flush_failed``."""
    if error is not None:
        return emit_event(FLUSH_FAILED, identity=identity, queued=queued, error=str(error))
    return emit_event(FLUSH_COMPLETED, identity=identity, queued=queued, total_enrollment_count=total)


def sync_failed(identity: str, kind: str, error: BaseException) -> TelemetryEvent:
    return emit_event(SYNC_FAILED, identity=identity, kind=kind, error=str(error))


class RecentEvents:
    """Bounded listener keeping the latest events, newest last."""

    def __init__(self, maxlen: int = 200) -> None:
        self._events: Deque[TelemetryEvent] = deque(maxlen=maxlen)
        self._lock = RLock()

    def __call__(self, event: TelemetryEvent) -> None:
        with self._lock:
            self._events.append(event)

    def __len__(self) -> int:
        return len(self._events)

    def snapshot(self, identity: Optional[str] = None, limit: Optional[int] = None) -> List[TelemetryEvent]:
        with self._lock:
            events = [event for event in self._events if identity is None or event.identity == identity]
        return events[-limit:] if limit else events

    def names(self) -> List[str]:
        return [event.name for event in self.snapshot()]


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        elif isinstance(value, (set, frozenset, tuple)):
            sanitized[key] = list(value)
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "RecentEvents",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "enrollment_recorded",
    "flush_finished",
    "register_listener",
    "sync_failed",
    "unregister_listener",
]
