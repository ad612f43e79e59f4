"""Process-wide sync engine wiring shared by the HTTP routes."""

from __future__ import annotations

import logging
from typing import Optional

from .config import get_settings
from .engine import SyncEngine
from .ortto import OrttoClient
from .telemetry import RecentEvents, register_listener, unregister_listener
from .user_state import UserStateStore

logger = logging.getLogger(__name__)

_engine: Optional[SyncEngine] = None
_client: Optional[OrttoClient] = None
_recent_events: Optional[RecentEvents] = None


def create_sync_engine() -> SyncEngine:
    global _client
    settings = get_settings()
    _client = OrttoClient.from_settings(settings)
    if not settings.ortto_api_key:
        logger.warning("ORTTO_API_KEY is not configured; CRM syncs will fail until it is set.")
    return SyncEngine.from_settings(settings, store=UserStateStore(), client=_client)


def get_sync_engine() -> SyncEngine:
    global _engine
    if _engine is None:
        _engine = create_sync_engine()
    return _engine


def get_recent_events() -> RecentEvents:
    """Buffer of the latest telemetry events, registered on first use."""
    global _recent_events
    if _recent_events is None:
        _recent_events = RecentEvents()
        register_listener(_recent_events)
    return _recent_events


async def close_sync_engine() -> None:
    """Stop pending flush tasks and release the HTTP client."""
    global _engine, _client, _recent_events
    settings = get_settings()
    if _engine is not None:
        await _engine.shutdown(flush=settings.flush_on_shutdown)
    if _client is not None:
        await _client.aclose()
    if _recent_events is not None:
        unregister_listener(_recent_events)
    _engine = None
    _client = None
    _recent_events = None


__all__ = ["close_sync_engine", "create_sync_engine", "get_recent_events", "get_sync_engine"]
