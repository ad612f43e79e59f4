"""Purchase history tracking for bundle orders."""

from __future__ import annotations

import asyncio
import logging
from typing import List

from .errors import OrttoSyncError
from .events import OrderEvent
from .flush import profile_update
from .locks import IdentityLocks
from .ortto import SyncClient
from .telemetry import BUNDLE_DUPLICATE, BUNDLE_RECORDED, BUNDLE_RESYNCED, emit_event, sync_failed
from .user_state import UserRecord, UserStateStore

logger = logging.getLogger(__name__)


def append_bundle(history: List[str], bundle: str) -> bool:
    """Append ``bundle`` unless it is already the current (last) entry.

    A bundle bought again after another one is appended again so the history
    keeps marking recency.
    """
    if history and history[-1] == bundle:
        return False
    history.append(bundle)
    return True


class BundleHistoryTracker:
    def __init__(self, store: UserStateStore, client: SyncClient, locks: IdentityLocks) -> None:
        self._store = store
        self._client = client
        self._locks = locks

    async def record(self, event: OrderEvent) -> bool:
        """Append the ordered bundle and sync it. Returns ``False`` for repeat notifications.

        A repeat of the current bundle leaves the history alone, but resends
        the bundle fields when the previous sync for it failed.
        """
        identity = event.user.email
        bundle = event.order.bundle_name.strip()
        appended = False
        resend = False

        def _append(record: UserRecord) -> bool:
            nonlocal appended, resend
            appended = append_bundle(record.bundle_history, bundle)
            if appended:
                record.bundle_sync_pending = True
                return True
            resend = record.bundle_sync_pending
            return False

        async with self._locks.lock_for(identity):
            record = await asyncio.to_thread(self._store.mutate, identity, _append)

        if not appended and not resend:
            logger.info("Duplicate order for %s with current bundle %s ignored", identity, bundle)
            emit_event(BUNDLE_DUPLICATE, identity=identity, bundle=bundle)
            return False

        old_bundles = record.old_bundles
        update = profile_update(
            event.user,
            current_bundle=record.current_bundle,
            old_bundles=", ".join(old_bundles) if old_bundles else None,
        )
        try:
            await self._client.merge_people([update])
        except OrttoSyncError as exc:
            logger.error("Bundle sync for %s failed; it is resent on the next %s order: %s", identity, bundle, exc)
            sync_failed(identity, event.kind.value, exc)
            return appended

        def _mark_synced(current: UserRecord) -> bool:
            if not current.bundle_sync_pending or current.current_bundle != bundle:
                return False
            current.bundle_sync_pending = False
            return True

        async with self._locks.lock_for(identity):
            await asyncio.to_thread(self._store.mutate, identity, _mark_synced)

        if appended:
            logger.info("Bundle %s recorded for %s (history length %d)", bundle, identity, len(record.bundle_history))
            emit_event(BUNDLE_RECORDED, identity=identity, bundle=bundle, history=list(record.bundle_history))
        else:
            logger.info("Bundle %s resent for %s after an earlier failed sync", bundle, identity)
            emit_event(BUNDLE_RESYNCED, identity=identity, bundle=bundle)
        return appended


__all__ = ["BundleHistoryTracker", "append_bundle"]
