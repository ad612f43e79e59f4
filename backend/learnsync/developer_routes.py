"""Operator utilities for inspecting and nudging per-user sync state."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel

from .config import Settings, get_settings
from .engine import SyncEngine
from .runtime import get_recent_events, get_sync_engine
from .telemetry import RecentEvents
from .user_state import UserRecord


def require_debug_endpoints(settings: Settings = Depends(get_settings)) -> None:
    if not settings.debug_endpoints:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")


router = APIRouter(
    prefix="/api/developer",
    tags=["developer"],
    dependencies=[Depends(require_debug_endpoints)],
)


class UserStatePayload(BaseModel):
    record: UserRecord
    flush_state: str
    current_bundle: Optional[str] = None


class FlushResultPayload(BaseModel):
    identity: str
    flushed: Optional[bool] = None


@router.get("/users/{identity}", response_model=UserStatePayload)
async def developer_user_state(identity: str, engine: SyncEngine = Depends(get_sync_engine)) -> UserStatePayload:
    record = await asyncio.to_thread(engine.store.get, identity)
    return UserStatePayload(
        record=record,
        flush_state=engine.scheduler.state_of(identity).value,
        current_bundle=record.current_bundle,
    )


@router.get("/pending")
def developer_pending(engine: SyncEngine = Depends(get_sync_engine)) -> Dict[str, Any]:
    return {
        "window_seconds": engine.scheduler.window_seconds,
        "identities": engine.scheduler.pending_snapshot(),
    }


@router.post("/flush/{identity}", response_model=FlushResultPayload)
async def developer_flush(identity: str, engine: SyncEngine = Depends(get_sync_engine)) -> FlushResultPayload:
    flushed = await engine.flush_now(identity)
    return FlushResultPayload(identity=identity, flushed=flushed)


@router.delete("/users/{identity}", status_code=status.HTTP_204_NO_CONTENT)
async def developer_delete_user(identity: str, engine: SyncEngine = Depends(get_sync_engine)) -> Response:
    """Retention tooling only; the sync engine itself never deletes records."""
    deleted = await asyncio.to_thread(engine.store.delete, identity)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User record not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/events")
def developer_events(
    identity: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    events: RecentEvents = Depends(get_recent_events),
) -> List[Dict[str, Any]]:
    return [event.as_dict() for event in events.snapshot(identity=identity, limit=limit)]
