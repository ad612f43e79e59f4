"""Consolidates queued enrollment events into a single Ortto merge."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from .events import EnrollmentEvent, UserPayload
from .ortto import PersonUpdate, SyncClient
from .telemetry import flush_finished
from .user_state import UserRecord, UserStateStore

logger = logging.getLogger(__name__)


def profile_update(user: UserPayload, **fields: object) -> PersonUpdate:
    return PersonUpdate(
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        phone=user.resolved_phone(),
        **fields,  # type: ignore[arg-type]
    )


def build_flush_update(record: UserRecord, queue: Sequence[EnrollmentEvent]) -> PersonUpdate:
    """One update for the whole queue; the stored count already covers every queued event."""
    latest: Optional[EnrollmentEvent] = queue[-1] if queue else None
    if latest is None:
        return PersonUpdate(
            email=record.identity,
            total_enrollments=record.total_enrollment_count,
            enrolled_courses=record.course_names(),
        )
    course = latest.enrollment.course
    return profile_update(
        latest.user,
        total_enrollments=record.total_enrollment_count,
        enrolled_courses=record.course_names(),
        last_course=course.name or course.id,
    )


class BatchFlushExecutor:
    def __init__(self, store: UserStateStore, client: SyncClient) -> None:
        self._store = store
        self._client = client

    async def flush(self, identity: str, queue: Sequence[EnrollmentEvent]) -> bool:
        """Send the consolidated update. Failures are logged and never retried."""
        try:
            record = await asyncio.to_thread(self._store.get, identity)
            update = build_flush_update(record, queue)
            await self._client.merge_people([update])
        except Exception as exc:  # noqa: BLE001
            logger.error("Flush for %s failed (%d queued events dropped): %s", identity, len(queue), exc)
            flush_finished(identity, len(queue), error=exc)
            return False
        logger.info(
            "Flushed %d enrollment events for %s (total_enrollment_count=%d)",
            len(queue),
            identity,
            record.total_enrollment_count,
        )
        flush_finished(identity, len(queue), total=record.total_enrollment_count)
        return True


__all__ = ["BatchFlushExecutor", "build_flush_update", "profile_update"]
