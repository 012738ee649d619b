"""Cursor store - per (source, user) stream positions."""

from indexer.cursors.store import (
    CursorStore,
    InMemoryCursorStore,
    PostgresCursorStore,
    RedisCursorStore,
)

__all__ = [
    "CursorStore",
    "InMemoryCursorStore",
    "PostgresCursorStore",
    "RedisCursorStore",
]
