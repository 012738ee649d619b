"""
Resource kinds recognized under an app namespace.

A kind is identified by the path segment right after the namespace
(`/pub/pubky.app/<segment>/<id>`), or by a fixed file name for singleton
resources (`/pub/pubky.app/profile.json`). Each kind fixes how its
identifier is derived and which payload field carries the soft-delete
sentinel.
"""

from dataclasses import dataclass

from indexer.errors import UnrecognizedResourceKind
from indexer.ingestion.schemas import IdFamily


@dataclass(frozen=True)
class ResourceKind:
    """
    Path convention for one resource kind.

    Attributes:
        name: Kind discriminator stored on records
        segment: Collection segment, or file name for singletons
        id_family: How the identifier is derived
        identity_fields: Payload fields hashed into a hash id, in order
        sentinel_field: Payload field compared against the soft-delete sentinel
    """

    name: str
    segment: str
    id_family: IdFamily
    identity_fields: tuple[str, ...] = ()
    sentinel_field: str | None = None


SINGLETON_ID = "profile"

DEFAULT_KINDS: tuple[ResourceKind, ...] = (
    ResourceKind("post", "posts", IdFamily.TIMESTAMP, sentinel_field="content"),
    ResourceKind("file", "files", IdFamily.TIMESTAMP, sentinel_field="name"),
    ResourceKind("event", "events", IdFamily.TIMESTAMP, sentinel_field="title"),
    ResourceKind("tag", "tags", IdFamily.HASH, ("uri", "label"), sentinel_field="label"),
    ResourceKind("bookmark", "bookmarks", IdFamily.HASH, ("uri",), sentinel_field="uri"),
    ResourceKind("follow", "follows", IdFamily.USER),
    ResourceKind("mute", "mutes", IdFamily.USER),
    ResourceKind("profile", "profile.json", IdFamily.SINGLETON, sentinel_field="name"),
)


class ResourceKindRegistry:
    """Lookup of resource kinds by path shape and by name."""

    def __init__(self, kinds: tuple[ResourceKind, ...] = DEFAULT_KINDS):
        self._by_segment = {kind.segment: kind for kind in kinds}
        self._by_name = {kind.name: kind for kind in kinds}

    def get(self, name: str) -> ResourceKind:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnrecognizedResourceKind(f"Unknown resource kind: {name!r}") from None

    def classify(self, relative_path: str) -> tuple[ResourceKind, str]:
        """
        Classify a path relative to the app namespace.

        Args:
            relative_path: e.g. "posts/0033SSE3B1FQ0" or "profile.json"

        Returns:
            (kind, path identifier)

        Raises:
            UnrecognizedResourceKind: If no convention matches
        """
        segments = relative_path.split("/")
        kind = self._by_segment.get(segments[0])

        if kind is not None:
            if kind.id_family is IdFamily.SINGLETON and len(segments) == 1:
                return kind, SINGLETON_ID
            if kind.id_family is not IdFamily.SINGLETON and len(segments) == 2 and segments[1]:
                return kind, segments[1]

        raise UnrecognizedResourceKind(f"No resource kind matches {relative_path!r}")
