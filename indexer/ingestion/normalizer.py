"""
Event normalizer: raw wire events to typed domain events.

Resolves the owning user and logical path from the event URI, rejects
anything outside what was requested (sources are untrusted), and classifies
the resource kind by the path segment following the app namespace:

    pubky://<user>/pub/<app>/<kind segment>/<id>
"""

from collections.abc import Collection

from indexer.errors import PathOutsidePrefix
from indexer.ingestion.resource_kinds import ResourceKindRegistry
from indexer.ingestion.schemas import Event, EventKind, RawEvent, WireOp

# Path segments before the kind segment: "pub" and the app namespace
APP_NAMESPACE_DEPTH = 2


def split_uri(uri: str) -> tuple[str, str, str]:
    """
    Split a resource URI into (scheme, user id, absolute path).

    Raises:
        PathOutsidePrefix: If the URI has no scheme, user or path
    """
    scheme, sep, rest = uri.partition("://")
    if not sep or not scheme:
        raise PathOutsidePrefix(f"URI has no scheme: {uri!r}")

    user_id, slash, path = rest.partition("/")
    if not user_id or not slash or not path:
        raise PathOutsidePrefix(f"URI has no user or path: {uri!r}")

    return scheme, user_id, "/" + path


class EventNormalizer:
    """Turns RawEvents into Events, or raises an EventSkipped subclass."""

    def __init__(
        self,
        scheme: str = "pubky",
        kinds: ResourceKindRegistry | None = None,
    ):
        self._scheme = scheme
        self._kinds = kinds or ResourceKindRegistry()

    @property
    def kinds(self) -> ResourceKindRegistry:
        return self._kinds

    def normalize(
        self,
        raw: RawEvent,
        path_prefix: str,
        requested_users: Collection[str] | None = None,
    ) -> Event:
        """
        Normalize a raw event.

        Args:
            raw: Event as parsed from the stream
            path_prefix: Prefix filter the source was asked for
            requested_users: Users the batch was requested for; events for
                anyone else are rejected

        Raises:
            PathOutsidePrefix: Wrong scheme, unrequested user, or path outside prefix
            UnrecognizedResourceKind: Path matches no known convention
        """
        scheme, owner_id, path = split_uri(raw.uri)

        if scheme != self._scheme:
            raise PathOutsidePrefix(f"Unexpected URI scheme {scheme!r} in {raw.uri!r}")
        if requested_users is not None and owner_id not in requested_users:
            raise PathOutsidePrefix(f"Event for unrequested user {owner_id}")

        segments = path.strip("/").split("/")
        if not path.startswith(path_prefix) or ".." in segments:
            raise PathOutsidePrefix(f"Path {path!r} is outside {path_prefix!r}")

        kind, path_id = self._kinds.classify(
            "/".join(segments[APP_NAMESPACE_DEPTH:])
        )

        return Event(
            kind=EventKind.WRITE if raw.op is WireOp.PUT else EventKind.DELETE,
            owner_id=owner_id,
            path=path,
            uri=raw.uri,
            cursor=raw.cursor,
            resource_kind=kind.name,
            path_id=path_id,
            content_hash=raw.content_hash,
        )
