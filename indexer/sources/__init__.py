"""Sources: tracked per-user data stores and the users followed on each."""

from indexer.sources.registry import SourceRegistry
from indexer.sources.schemas import Source, Subscription

__all__ = [
    "Source",
    "SourceRegistry",
    "Subscription",
]
