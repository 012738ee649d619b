"""
Event schemas for the indexing pipeline.

RawEvent is what the event-stream parser produces; Event is the typed,
validated form handed to the apply engine. Events are transient: they are
never persisted verbatim, only reflected into records.
"""

from dataclasses import dataclass, field
from enum import Enum


class WireOp(str, Enum):
    """Operation token on the `event:` line of the stream."""

    PUT = "PUT"
    DEL = "DEL"


class EventKind(str, Enum):
    """Normalized change kind."""

    WRITE = "write"
    DELETE = "delete"


class IdFamily(str, Enum):
    """How a resource kind derives its identifier."""

    TIMESTAMP = "timestamp"
    HASH = "hash"
    USER = "user"
    SINGLETON = "singleton"


@dataclass(frozen=True)
class RawEvent:
    """One event exactly as framed on the wire."""

    op: WireOp
    uri: str
    cursor: str
    content_hash: str | None = None


@dataclass(frozen=True)
class Event:
    """
    A normalized change notification.

    Attributes:
        kind: WRITE or DELETE
        owner_id: Public identifier of the user owning the resource
        path: Absolute resource path (e.g. /pub/pubky.app/posts/0033...)
        uri: Full resource URI as delivered by the source
        cursor: Source-assigned position token; the user's new cursor
        resource_kind: Kind name from the resource-kind registry
        path_id: Identifier segment taken from the path
        content_hash: Fingerprint of the written bytes (None for DELETE)
    """

    kind: EventKind
    owner_id: str
    path: str
    uri: str
    cursor: str
    resource_kind: str
    path_id: str
    content_hash: str | None = None


@dataclass
class EventBatch:
    """
    Result of one events-stream fetch for a source.

    `cursors` holds, for every requested user, the cursor of the last event
    seen for that user in this batch, or the caller's cursor unchanged.
    """

    source: str
    events: list[RawEvent] = field(default_factory=list)
    cursors: dict[str, str | None] = field(default_factory=dict)
    limit: int | None = None

    @property
    def is_full(self) -> bool:
        """Whether the source likely has more events beyond this batch."""
        return self.limit is not None and len(self.events) >= self.limit

    def advanced_cursors(self, previous: dict[str, str | None]) -> dict[str, str]:
        """Cursors that differ from the ones the batch was requested with."""
        return {
            user: cursor
            for user, cursor in self.cursors.items()
            if cursor is not None and cursor != previous.get(user)
        }
