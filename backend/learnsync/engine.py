"""Routes classified webhook events to their handling strategy."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .bundles import BundleHistoryTracker
from .classifier import EventClassifier, SyncStrategy
from .config import Settings
from .errors import OrttoSyncError
from .events import EnrollmentEvent, EventKind, InboundEvent, OrderEvent, UserEvent, WebhookEnvelope, build_event
from .flush import BatchFlushExecutor, profile_update
from .locks import IdentityLocks
from .ortto import PersonUpdate, SyncClient
from .scheduler import DebounceScheduler
from .telemetry import WEBHOOK_IGNORED, emit_event, sync_failed
from .user_state import UserRecord, UserStateStore

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DispatchResult:
    outcome: DispatchOutcome
    handler_key: str
    kind: Optional[EventKind] = None

    @property
    def message(self) -> str:
        if self.outcome is DispatchOutcome.IGNORED:
            return "No action required"
        return "Webhook processed"


def progress_percent(value: Optional[float]) -> Optional[int]:
    """Thinkific reports progress as a 0-1 fraction; values above 1 are taken as percentages."""
    if value is None:
        return None
    percent = value * 100 if value <= 1 else value
    return max(0, min(100, round(percent)))


class SyncEngine:
    def __init__(
        self,
        store: UserStateStore,
        client: SyncClient,
        *,
        classifier: Optional[EventClassifier] = None,
        window_seconds: float = 300.0,
    ) -> None:
        self.store = store
        self.client = client
        self.classifier = classifier or EventClassifier()
        self._locks = IdentityLocks()
        self.executor = BatchFlushExecutor(store, client)
        self.scheduler = DebounceScheduler(store, self.executor, self._locks, window_seconds=window_seconds)
        self.bundles = BundleHistoryTracker(store, client, self._locks)

    @classmethod
    def from_settings(cls, settings: Settings, *, store: UserStateStore, client: SyncClient) -> "SyncEngine":
        return cls(store, client, window_seconds=settings.debounce_seconds)

    async def dispatch(self, envelope: WebhookEnvelope) -> DispatchResult:
        """Handle one webhook.

        Unknown (resource, action) pairs are acknowledged without touching any
        state. Payload validation and persistence errors propagate; Ortto
        failures are logged by the handlers.
        """
        key = envelope.handler_key
        route = self.classifier.classify(envelope.resource, envelope.action)
        if route is None:
            logger.info("No handler found for %s", key)
            emit_event(WEBHOOK_IGNORED, handler_key=key)
            return DispatchResult(DispatchOutcome.IGNORED, key)

        event = build_event(route.kind, envelope)
        if route.strategy is SyncStrategy.DEBOUNCED:
            assert isinstance(event, EnrollmentEvent)
            novel = await self.scheduler.enqueue(event)
        elif route.strategy is SyncStrategy.HISTORY:
            assert isinstance(event, OrderEvent)
            novel = await self.bundles.record(event)
        else:
            novel = await self._sync_immediately(event)

        outcome = DispatchOutcome.PROCESSED if novel else DispatchOutcome.DUPLICATE
        return DispatchResult(outcome, key, route.kind)

    async def _sync_immediately(self, event: InboundEvent) -> bool:
        """Sync one user-facing event right away.

        Sign-ins redelivered with an already seen event id are not counted
        again, but the current count is still sent. Ortto failures are logged
        and not raised, so the platform does not redeliver the event.
        """
        identity = event.user.email
        novel = True
        update: PersonUpdate
        if event.kind in (EventKind.SIGN_IN, EventKind.SIGN_UP):

            def _count(record: UserRecord) -> bool:
                nonlocal novel
                novel = record.record_sign_in(event.event_id)
                return novel

            async with self._locks.lock_for(identity):
                record = await asyncio.to_thread(self.store.mutate, identity, _count)
            if not novel:
                logger.info("Sign-in %s for %s already counted", event.event_id, identity)
            update = profile_update(event.user, sign_in_count=record.sign_in_count)
        elif isinstance(event, EnrollmentEvent):
            course = event.enrollment.course
            update = profile_update(
                event.user,
                last_course=course.name or course.id,
                last_course_progress=progress_percent(event.enrollment.percentage_completed),
            )
        else:
            assert isinstance(event, UserEvent)
            update = profile_update(event.user)

        try:
            await self.client.merge_people([update])
        except OrttoSyncError as exc:
            logger.error("Sync of %s for %s failed: %s", event.kind.value, identity, exc)
            sync_failed(identity, event.kind.value, exc)
            return novel
        logger.info("Synced %s for %s", event.kind.value, identity)
        return novel

    async def flush_now(self, identity: str) -> Optional[bool]:
        return await self.scheduler.flush_now(identity)

    async def shutdown(self, *, flush: bool = True) -> None:
        await self.scheduler.shutdown(flush=flush)


__all__ = [
    "DispatchOutcome",
    "DispatchResult",
    "SyncEngine",
    "progress_percent",
]
