"""
Error taxonomy for the indexing pipeline.

Three families with different handling in the poller:
- SourceError: transient, the source is skipped for this cycle and no
  cursor moves.
- EventSkipped: the content of a single event cannot be indexed. The event
  is consumed (logged and counted) and the user's cursor advances past it.
- ApplyFailure: the downstream store rejected a write. The whole batch is
  aborted and re-fetched on the next cycle.
"""


class IndexerError(Exception):
    """Base exception for indexer errors."""

    pass


class SourceError(IndexerError):
    """A source could not deliver a usable batch."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source


class SourceUnreachable(SourceError):
    """Network or connection failure talking to a source."""

    pass


class SourceProtocolError(SourceError):
    """Source response could not be parsed or violates the feed contract."""

    pass


class EventSkipped(IndexerError):
    """A single event cannot be indexed and must be consumed without apply."""

    reason = "skipped"


class MalformedId(EventSkipped, ValueError):
    """An identifier string could not be decoded or validated."""

    reason = "malformed_id"


class UnrecognizedResourceKind(EventSkipped):
    """Resource path does not match any known kind convention."""

    reason = "unrecognized_kind"


class PathOutsidePrefix(EventSkipped):
    """Event refers to a path or user outside what was requested."""

    reason = "outside_prefix"


class InvalidPayload(EventSkipped):
    """Resource content is missing or is not a JSON object."""

    reason = "invalid_payload"


class ApplyFailure(IndexerError):
    """Downstream store rejected a write."""

    pass
