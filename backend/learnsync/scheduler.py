"""Enrollment deduplication and debounced flush scheduling.

Each identity is either idle or accumulating a queue of novel enrollment
events behind one armed delayed task. The first novel event arms the task;
later events within the window join the queue. When the task fires, the
queue is handed to the :class:`~learnsync.flush.BatchFlushExecutor` and the
identity returns to idle.

Armed tasks live in memory only. A crash during the window loses the queued
CRM sync, but the enrollment counters are persisted before the task is armed,
and the next novel enrollment resends the cumulative state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from .events import EnrollmentEvent
from .flush import BatchFlushExecutor
from .locks import IdentityLocks
from .telemetry import ENROLLMENT_DUPLICATE, ENROLLMENT_UNSCHEDULED, emit_event, enrollment_recorded
from .user_state import UserRecord, UserStateStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 300.0


class FlushState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"


@dataclass
class PendingFlushState:
    queue: List[EnrollmentEvent] = field(default_factory=list)
    pending: bool = False
    armed_at: Optional[datetime] = None
    task: Optional["asyncio.Task[None]"] = None

    @property
    def state(self) -> FlushState:
        return FlushState.ACCUMULATING if self.pending else FlushState.IDLE


class DebounceScheduler:
    def __init__(
        self,
        store: UserStateStore,
        executor: BatchFlushExecutor,
        locks: IdentityLocks,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self._executor = executor
        self._locks = locks
        self._window = window_seconds
        self._states: Dict[str, PendingFlushState] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._closed = False

    @property
    def window_seconds(self) -> float:
        return self._window

    def state_of(self, identity: str) -> FlushState:
        state = self._states.get(identity)
        return state.state if state else FlushState.IDLE

    def pending_snapshot(self) -> Dict[str, Dict[str, object]]:
        return {
            identity: {
                "queued": len(state.queue),
                "armed_at": state.armed_at.isoformat() if state.armed_at else None,
                "course_ids": [event.enrollment.course.id for event in state.queue],
            }
            for identity, state in self._states.items()
        }

    async def enqueue(self, event: EnrollmentEvent) -> bool:
        """Record a course enrollment. Returns ``False`` for duplicate notifications."""
        identity = event.user.email
        course = event.enrollment.course
        async with self._locks.lock_for(identity):
            novel = False

            def _enroll(record: UserRecord) -> bool:
                nonlocal novel
                novel = record.enroll(course.id, course.name, event.event_id)
                return novel

            record = await asyncio.to_thread(self._store.mutate, identity, _enroll)
            if not novel:
                logger.info("Duplicate enrollment for %s in course %s ignored", identity, course.id)
                emit_event(ENROLLMENT_DUPLICATE, identity=identity, course_id=course.id)
                return False

            if self._closed:
                # The count is already durable; only the CRM sync for this event is skipped.
                logger.warning("Scheduler closed; enrollment for %s in course %s will not be synced", identity, course.id)
                emit_event(ENROLLMENT_UNSCHEDULED, identity=identity, course_id=course.id)
                return True

            state = self._states.setdefault(identity, PendingFlushState())
            state.queue.append(event)
            armed = False
            if not state.pending:
                state.pending = True
                state.armed_at = datetime.now(timezone.utc)
                state.task = asyncio.create_task(self._fire_after_window(identity), name=f"flush:{identity}")
                self._tasks.add(state.task)
                state.task.add_done_callback(self._tasks.discard)
                armed = True
            queued = len(state.queue)

        logger.info(
            "Enrollment recorded for %s in course %s (total=%d, queued=%d)",
            identity,
            course.id,
            record.total_enrollment_count,
            queued,
        )
        enrollment_recorded(identity, course.id, total=record.total_enrollment_count, queued=queued, armed=armed)
        return True

    async def _fire_after_window(self, identity: str) -> None:
        await asyncio.sleep(self._window)
        await self._flush(identity)

    async def _take_queue(self, identity: str) -> List[EnrollmentEvent]:
        async with self._locks.lock_for(identity):
            state = self._states.pop(identity, None)
        return state.queue if state else []

    async def _flush(self, identity: str) -> Optional[bool]:
        queue = await self._take_queue(identity)
        if not queue:
            return None
        return await self._executor.flush(identity, queue)

    async def flush_now(self, identity: str) -> Optional[bool]:
        """Flush ``identity`` without waiting for its window; ``None`` when nothing is queued."""
        state = self._states.get(identity)
        if state is None:
            return None
        task = state.task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        return await self._flush(identity)

    async def shutdown(self, *, flush: bool = True) -> None:
        """Cancel armed tasks, optionally flushing their queues right away."""
        self._closed = True
        # Tasks still holding a queue are waiting out their window; anything
        # else in the task set is mid-flush and is allowed to finish.
        waiting = [state.task for state in self._states.values() if state.task is not None]
        for task in waiting:
            task.cancel()
        running = list(self._tasks)
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        identities = list(self._states)
        if not flush:
            if identities:
                logger.warning("Dropping queued enrollment syncs for %d identities on shutdown", len(identities))
            self._states.clear()
            return
        if identities:
            logger.info("Flushing %d queued identities on shutdown", len(identities))
            await asyncio.gather(*(self._flush(identity) for identity in identities))


__all__ = [
    "DEFAULT_WINDOW_SECONDS",
    "DebounceScheduler",
    "FlushState",
    "PendingFlushState",
]
