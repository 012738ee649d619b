"""Event ingestion - stream client, framing, normalization, deduplication."""

from indexer.ingestion.normalizer import EventNormalizer
from indexer.ingestion.schemas import (
    Event,
    EventBatch,
    EventKind,
    IdFamily,
    RawEvent,
    WireOp,
)
from indexer.ingestion.stream_client import EventStreamClient

__all__ = [
    "Event",
    "EventBatch",
    "EventKind",
    "EventNormalizer",
    "EventStreamClient",
    "IdFamily",
    "RawEvent",
    "WireOp",
]
