"""
Service entry point.

    python -m indexer.main

All configuration comes from the environment (see indexer.config.settings).
Tracked sources and users are loaded from SOURCES_FILE.
"""

import asyncio
import signal
from contextlib import AsyncExitStack

import structlog

from indexer.apply.engine import ApplyEngine
from indexer.config.settings import Settings, get_settings
from indexer.cursors.store import (
    CursorStore,
    InMemoryCursorStore,
    PostgresCursorStore,
    RedisCursorStore,
)
from indexer.ingestion.http_client import HTTPClient, RetryConfig
from indexer.ingestion.normalizer import EventNormalizer
from indexer.ingestion.stream_client import EventStreamClient
from indexer.observability.logging import setup_logging
from indexer.observability.metrics import get_metrics
from indexer.services.poller import IndexerService
from indexer.sources.registry import SourceRegistry
from indexer.storage.base import RecordStore
from indexer.storage.database import Database
from indexer.storage.memory import InMemoryRecordStore
from indexer.storage.repository import PostgresRecordRepository

logger = structlog.get_logger(__name__)


def load_registry(settings: Settings) -> SourceRegistry:
    """Registry from the sources file, or empty if none is configured."""
    if settings.sources_file is None:
        logger.warning("No SOURCES_FILE configured, nothing to poll")
        return SourceRegistry()
    return SourceRegistry.from_file(settings.sources_file, settings.default_path_prefix)


async def open_stores(
    settings: Settings,
    stack: AsyncExitStack,
) -> tuple[RecordStore, CursorStore]:
    """Connect the configured record and cursor backends, ensuring their tables."""
    database: Database | None = None
    if "postgres" in (settings.record_backend, settings.cursor_backend):
        database = await stack.enter_async_context(Database(str(settings.database_url)))

    if settings.record_backend == "postgres":
        repository = PostgresRecordRepository(database)
        await repository.create_table()
        records: RecordStore = repository
    else:
        records = InMemoryRecordStore()

    if settings.cursor_backend == "postgres":
        cursor_store = PostgresCursorStore(database)
        await cursor_store.create_table()
        cursors: CursorStore = cursor_store
    elif settings.cursor_backend == "redis":
        cursors = RedisCursorStore(str(settings.redis_url), settings.redis_cursor_prefix)
    else:
        cursors = InMemoryCursorStore()
    await stack.enter_async_context(cursors)

    logger.info(
        "Stores ready",
        record_backend=settings.record_backend,
        cursor_backend=settings.cursor_backend,
    )
    return records, cursors


async def run(settings: Settings) -> None:
    """Wire the pipeline and poll until SIGINT/SIGTERM."""
    registry = load_registry(settings)

    async with AsyncExitStack() as stack:
        records, cursors = await open_stores(settings, stack)

        retry_config = RetryConfig(
            max_retries=settings.max_http_retries,
            max_backoff_seconds=settings.max_backoff_seconds,
        )
        http = await stack.enter_async_context(
            HTTPClient(retry_config, timeout=settings.http_timeout_seconds)
        )

        service = IndexerService(
            registry=registry,
            cursor_store=cursors,
            stream_client=EventStreamClient(http, batch_limit=settings.event_batch_limit),
            apply_engine=ApplyEngine(records, sentinel=settings.soft_delete_sentinel),
            normalizer=EventNormalizer(scheme=settings.uri_scheme),
            settings=settings,
        )

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        await service.start()


def main() -> None:
    settings = get_settings()
    setup_logging(settings)

    if settings.metrics_enabled:
        get_metrics().start_server(port=settings.metrics_port)

    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
