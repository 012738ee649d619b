"""Services that orchestrate polling and applying."""

from indexer.services.poller import BatchStatus, IndexerService, PollResult

__all__ = ["BatchStatus", "IndexerService", "PollResult"]
