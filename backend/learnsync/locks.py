"""Per-identity asyncio locks."""

from __future__ import annotations

import asyncio
import weakref


class IdentityLocks:
    """Hands out one :class:`asyncio.Lock` per identity.

    Entries disappear once no coroutine holds or waits on the lock, so the
    registry does not grow with the number of users ever seen.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[identity] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["IdentityLocks"]
