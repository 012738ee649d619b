"""
Apply module - idempotent materialization of events into records.

Invariants:
    - Applying the same event twice has no further effect
    - Deletes tombstone records; they are never physically removed
    - Soft deletion via sentinel content is decided by is_soft_deleted() only
"""

from indexer.apply.engine import (
    ApplyAction,
    ApplyEngine,
    ApplyOutcome,
    is_soft_deleted,
    resolve_identifier,
)

__all__ = [
    "ApplyAction",
    "ApplyEngine",
    "ApplyOutcome",
    "is_soft_deleted",
    "resolve_identifier",
]
