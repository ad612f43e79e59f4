"""Exception hierarchy shared across the sync service."""

from __future__ import annotations


class LearnSyncError(Exception):
    """Base class for errors raised by the sync service."""


class InvalidWebhookPayload(LearnSyncError):
    """Inbound webhook body is missing required envelope fields."""


class InvalidSignature(LearnSyncError):
    """Webhook signature header is missing or does not match the body."""


class StatePersistenceError(LearnSyncError):
    """Writing the user state snapshot failed."""


class OrttoSyncError(LearnSyncError):
    """Ortto rejected a request or could not be reached."""


class ThinkificApiError(LearnSyncError):
    """Thinkific admin API call failed."""


__all__ = [
    "InvalidSignature",
    "InvalidWebhookPayload",
    "LearnSyncError",
    "OrttoSyncError",
    "StatePersistenceError",
    "ThinkificApiError",
]
