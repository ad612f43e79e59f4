"""Database utilities for the database persistence mode."""

from .session import dispose_engine, ensure_schema, get_engine, session_scope

__all__ = [
    "dispose_engine",
    "ensure_schema",
    "get_engine",
    "session_scope",
]
