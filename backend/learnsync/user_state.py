"""Per-user sync state models and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .config import get_settings
from .db.session import session_scope
from .errors import StatePersistenceError

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_STATE_FILE = "user_state.json"
RECENT_SIGN_IN_LIMIT = 20


if TYPE_CHECKING:
    from .repositories.user_records import UserRecordRepository


def _repo() -> "UserRecordRepository":
    from .repositories.user_records import user_records as repository

    return repository


def _now() -> datetime:
    return datetime.now(timezone.utc)


def require_identity(value: str) -> str:
    """Identities are matched exactly; only blank values are rejected."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Identity cannot be empty.")
    return value


class EnrolledCourse(BaseModel):
    course_id: str
    course_name: str = ""
    source_event_id: Optional[str] = None
    enrolled_at: datetime = Field(default_factory=_now)


class UserRecord(BaseModel):
    identity: str
    sign_in_count: int = Field(default=0, ge=0)
    enrolled_courses: Dict[str, EnrolledCourse] = Field(default_factory=dict)
    total_enrollment_count: int = Field(default=0, ge=0)
    bundle_history: List[str] = Field(default_factory=list)
    bundle_sync_pending: bool = False
    recent_sign_in_ids: List[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _sync_enrollment_count(self) -> "UserRecord":
        self.total_enrollment_count = len(self.enrolled_courses)
        return self

    def has_course(self, course_id: str) -> bool:
        return course_id in self.enrolled_courses

    def enroll(self, course_id: str, course_name: str, source_event_id: Optional[str] = None) -> bool:
        if course_id in self.enrolled_courses:
            return False
        self.enrolled_courses[course_id] = EnrolledCourse(
            course_id=course_id,
            course_name=course_name,
            source_event_id=source_event_id,
        )
        self.total_enrollment_count = len(self.enrolled_courses)
        return True

    def record_sign_in(self, event_id: Optional[str] = None) -> bool:
        """Count one sign-in. Redelivered events with an already seen id are not counted."""
        if event_id:
            if event_id in self.recent_sign_in_ids:
                return False
            self.recent_sign_in_ids = (self.recent_sign_in_ids + [event_id])[-RECENT_SIGN_IN_LIMIT:]
        self.sign_in_count += 1
        return True

    def course_names(self) -> List[str]:
        return [course.course_name or course.course_id for course in self.enrolled_courses.values()]

    @property
    def current_bundle(self) -> Optional[str]:
        return self.bundle_history[-1] if self.bundle_history else None

    @property
    def old_bundles(self) -> List[str]:
        current = self.current_bundle
        seen: List[str] = []
        for name in self.bundle_history[:-1]:
            if name != current and name not in seen:
                seen.append(name)
        return seen


Mutator = Callable[[UserRecord], bool]


class _JsonUserStateStore:
    """Whole-snapshot JSON persistence.

    The store owns the in-memory snapshot; each write replaces only its own
    identity inside the snapshot while holding the lock, then persists the
    full collection.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path or DATA_DIR / DEFAULT_STATE_FILE
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, UserRecord]] = None

    @property
    def path(self) -> Path:
        return self._path

    @staticmethod
    def _clone(record: UserRecord) -> UserRecord:
        return record.model_copy(deep=True)

    def _load_unlocked(self) -> Dict[str, UserRecord]:
        if self._snapshot is not None:
            return self._snapshot
        records: Dict[str, UserRecord] = {}
        if self._path.exists():
            try:
                with self._path.open("r", encoding="utf-8") as handle:
                    raw = json.load(handle)
            except (OSError, ValueError) as exc:
                logger.warning("Unable to read user state at %s; starting empty: %s", self._path, exc)
                raw = {}
            if not isinstance(raw, dict):
                logger.warning("User state at %s was not a mapping; starting empty", self._path)
                raw = {}
            for key, payload in raw.items():
                try:
                    records[key] = UserRecord.model_validate(payload)
                except Exception:  # noqa: BLE001
                    logger.exception("Failed to parse stored user record %s", key)
        self._snapshot = records
        return records

    def _write_unlocked(self, records: Dict[str, UserRecord]) -> None:
        payload = {identity: record.model_dump(mode="json") for identity, record in records.items()}
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            logger.error("Failed to persist user state to %s: %s", self._path, exc)
            raise StatePersistenceError(f"Failed to persist user state: {exc}") from exc

    def get(self, identity: str) -> UserRecord:
        require_identity(identity)
        with self._lock:
            record = self._load_unlocked().get(identity)
            return self._clone(record) if record else UserRecord(identity=identity)

    def put(self, record: UserRecord) -> UserRecord:
        require_identity(record.identity)
        clone = self._clone(record)
        clone.last_updated = _now()
        with self._lock:
            records = self._load_unlocked()
            records[clone.identity] = clone
            self._write_unlocked(records)
        return self._clone(clone)

    def mutate(self, identity: str, mutator: Mutator) -> UserRecord:
        require_identity(identity)
        with self._lock:
            records = self._load_unlocked()
            existing = records.get(identity)
            record = self._clone(existing) if existing else UserRecord(identity=identity)
            if not mutator(record):
                return self._clone(record)
            record.last_updated = _now()
            records[identity] = record
            self._write_unlocked(records)
            return self._clone(record)

    def delete(self, identity: str) -> bool:
        require_identity(identity)
        with self._lock:
            records = self._load_unlocked()
            if identity not in records:
                return False
            del records[identity]
            self._write_unlocked(records)
            return True

    def identities(self) -> List[str]:
        with self._lock:
            return sorted(self._load_unlocked())


class _DatabaseUserStateStore:
    """Row-per-identity persistence mirroring the JSON store API."""

    def get(self, identity: str) -> UserRecord:
        require_identity(identity)
        with session_scope(commit=False) as session:
            record = _repo().get(session, identity)
            return record if record else UserRecord(identity=identity)

    def put(self, record: UserRecord) -> UserRecord:
        require_identity(record.identity)
        with session_scope() as session:
            return _repo().upsert(session, record)

    def mutate(self, identity: str, mutator: Mutator) -> UserRecord:
        require_identity(identity)
        with session_scope() as session:
            record = _repo().get(session, identity, for_update=True) or UserRecord(identity=identity)
            if not mutator(record):
                return record
            return _repo().upsert(session, record)

    def delete(self, identity: str) -> bool:
        require_identity(identity)
        with session_scope() as session:
            return _repo().delete(session, identity)

    def identities(self) -> List[str]:
        with session_scope(commit=False) as session:
            return _repo().identities(session)


class UserStateStore:
    """Facade that delegates to JSON or database persistence based on configuration."""

    def __init__(self, path: Optional[Path] = None, mode: Optional[str] = None) -> None:
        settings = get_settings()
        self._mode = mode or settings.persistence_mode
        if self._mode == "database":
            self._backend: _JsonUserStateStore | _DatabaseUserStateStore = _DatabaseUserStateStore()
        else:
            resolved = path or (Path(settings.data_path) if settings.data_path else None)
            self._backend = _JsonUserStateStore(path=resolved)
        logger.info("User state persistence mode: %s", self._mode)

    @property
    def mode(self) -> str:
        return self._mode

    def get(self, identity: str) -> UserRecord:
        return self._backend.get(identity)

    def put(self, record: UserRecord) -> UserRecord:
        return self._backend.put(record)

    def mutate(self, identity: str, mutator: Mutator) -> UserRecord:
        """Apply ``mutator`` as one read-modify-write unit.

        The mutator returns ``True`` when it changed the record; unchanged
        records are not written back.
        """
        return self._backend.mutate(identity, mutator)

    def delete(self, identity: str) -> bool:
        return self._backend.delete(identity)

    def identities(self) -> List[str]:
        return self._backend.identities()


__all__ = [
    "EnrolledCourse",
    "Mutator",
    "UserRecord",
    "UserStateStore",
    "require_identity",
]
