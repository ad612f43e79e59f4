"""Maps inbound (resource, action) pairs onto handling strategies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

from .events import EventKind


class SyncStrategy(str, Enum):
    IMMEDIATE = "immediate"
    DEBOUNCED = "debounced"
    HISTORY = "history"


@dataclass(frozen=True)
class EventRoute:
    kind: EventKind
    strategy: SyncStrategy


DEFAULT_ROUTES: Dict[str, EventRoute] = {
    "user:signup": EventRoute(EventKind.SIGN_UP, SyncStrategy.IMMEDIATE),
    "user:signin": EventRoute(EventKind.SIGN_IN, SyncStrategy.IMMEDIATE),
    "user:updated": EventRoute(EventKind.PROFILE_UPDATED, SyncStrategy.IMMEDIATE),
    "enrollment:created": EventRoute(EventKind.ENROLLMENT_CREATED, SyncStrategy.DEBOUNCED),
    "enrollment:progress": EventRoute(EventKind.ENROLLMENT_PROGRESS, SyncStrategy.IMMEDIATE),
    "order:created": EventRoute(EventKind.ORDER_CREATED, SyncStrategy.HISTORY),
}


def route_key(resource: str, action: str) -> str:
    return f"{resource}:{action}"


class EventClassifier:
    """Pure lookup table; unknown pairs classify as ``None``."""

    def __init__(self, routes: Optional[Mapping[str, EventRoute]] = None) -> None:
        self._routes: Dict[str, EventRoute] = dict(DEFAULT_ROUTES if routes is None else routes)

    def classify(self, resource: str, action: str) -> Optional[EventRoute]:
        return self._routes.get(route_key(resource, action))

    def topics(self) -> list[str]:
        """Platform webhook topics (``resource.action``) with a registered route."""
        return [key.replace(":", ".", 1) for key in self._routes]


__all__ = [
    "DEFAULT_ROUTES",
    "EventClassifier",
    "EventRoute",
    "SyncStrategy",
    "route_key",
]
