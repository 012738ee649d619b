"""
Poller service - periodic fan-out across sources.

Each cycle polls every registered source in its own task, with at most
`max_concurrent_sources` in flight. Within a source the batch runs strictly
in sequence:

    collect -> fetch -> normalize & apply -> commit

Cursors are committed only after every event of the batch was applied or
consumed as a skip. A source error or ApplyFailure aborts the batch with no
cursor movement, so the next cycle re-fetches and re-applies the same range.
Applying is idempotent, which makes that replay safe.

Features:
- One events-stream request per source for all of its users
- Backlog draining: full batches are followed immediately by the next one
- Per-event skips never block progress for the rest of the batch
- Graceful shutdown and deregistration (in-flight results are discarded)
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from indexer.apply.engine import ApplyEngine
from indexer.config.settings import Settings, get_settings
from indexer.cursors.store import CursorStore
from indexer.errors import (
    ApplyFailure,
    EventSkipped,
    SourceProtocolError,
    SourceUnreachable,
)
from indexer.ingestion.deduplication import superseded_indices
from indexer.ingestion.normalizer import EventNormalizer
from indexer.ingestion.schemas import Event, EventBatch, EventKind
from indexer.ingestion.stream_client import EventStreamClient
from indexer.observability.logging import bind_source_context, clear_context
from indexer.observability.metrics import MetricsCollector, get_metrics
from indexer.sources.registry import SourceRegistry
from indexer.sources.schemas import Source, Subscription

logger = structlog.get_logger(__name__)

SUPERSEDED = "superseded"


class BatchStatus(str, Enum):
    """Outcome of polling a source."""

    COMMITTED = "committed"
    IDLE = "idle"
    UNREACHABLE = "unreachable"
    PROTOCOL_ERROR = "protocol_error"
    APPLY_FAILURE = "apply_failure"
    DISCARDED = "discarded"
    ERROR = "error"


@dataclass
class PollResult:
    """Aggregated result of one source's poll within a cycle."""

    source: str
    status: BatchStatus = BatchStatus.IDLE
    batches: int = 0
    events: int = 0
    applied: int = 0
    skipped: dict[str, int] = field(default_factory=dict)
    committed_cursors: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    def count_skip(self, reason: str) -> None:
        self.skipped[reason] = self.skipped.get(reason, 0) + 1


class IndexerService:
    """
    Service that keeps the record index in sync with all tracked sources.

    Usage:
        service = IndexerService(registry, cursor_store, stream_client, engine)
        await service.start()  # Runs until stopped

        # or a single pass, e.g. from tests
        results = await service.run_cycle()
    """

    def __init__(
        self,
        registry: SourceRegistry,
        cursor_store: CursorStore,
        stream_client: EventStreamClient,
        apply_engine: ApplyEngine,
        normalizer: EventNormalizer | None = None,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        settings = settings or get_settings()

        self._registry = registry
        self._cursors = cursor_store
        self._client = stream_client
        self._engine = apply_engine
        self._normalizer = normalizer or EventNormalizer(scheme=settings.uri_scheme)
        self._metrics = metrics or get_metrics()

        self._poll_interval = settings.poll_interval_seconds
        self._max_batches = settings.max_batches_per_cycle
        self._source_slots = asyncio.Semaphore(settings.max_concurrent_sources)
        self._hydration_concurrency = settings.hydration_concurrency

        self._running = False
        self._cycle_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        # Held across commit and deregistration of the same address
        self._commit_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        logger.info(
            "Indexer service initialized",
            sources=len(registry),
            poll_interval=self._poll_interval,
        )

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Run poll cycles every poll interval until stop() is called."""
        self._running = True
        self._stop_event = asyncio.Event()
        logger.info("Starting indexer service")

        try:
            while self._running:
                self._cycle_task = asyncio.create_task(self.run_cycle(), name="poll_cycle")
                try:
                    await self._cycle_task
                except asyncio.CancelledError:
                    if self._running:
                        raise
                    break
                finally:
                    self._cycle_task = None

                if self._running:
                    await self._wait_for_next_cycle()
        except asyncio.CancelledError:
            logger.info("Indexer service cancelled")
        finally:
            self._running = False
            logger.info("Indexer service stopped")

    async def stop(self) -> None:
        """Stop the service. An in-flight cycle is abandoned before its commits."""
        logger.info("Stopping indexer service")
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._cycle_task is not None:
            self._cycle_task.cancel()
            await asyncio.gather(self._cycle_task, return_exceptions=True)

    async def _wait_for_next_cycle(self) -> None:
        """Sleep for the poll interval, returning early once stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass

    # ── Source management ───────────────────────────────────────

    async def deregister_source(self, address: str) -> bool:
        """
        Stop tracking a source and drop its cursors.

        A poll already in flight for it finishes its fetch, but its results
        are discarded instead of committed. A commit already running is
        waited for, and its cursors are dropped with the rest.
        """
        source = self._registry.get(address)
        if source is None:
            return False
        async with self._commit_locks[source.address]:
            if self._registry.get(source.address) is not source:
                return False
            self._registry.deregister(source.address)
            await self._cursors.drop_source(source.address)
        logger.info("Source deregistered", source=source.address)
        return True

    async def reset_cursor(self, address: str, user_id: str) -> None:
        """Force a full resync of one user on the next poll."""
        source = self._registry.get(address)
        if source is None:
            raise KeyError(f"Unknown source: {address}")
        await self._cursors.reset(source.address, user_id)
        logger.info("Cursor reset", source=source.address, user=user_id)

    # ── Polling ─────────────────────────────────────────────────

    async def run_cycle(self) -> dict[str, PollResult]:
        """
        Poll every registered source once (draining full batches).

        Returns:
            PollResult per source address
        """
        sources = self._registry.sources()
        results = await asyncio.gather(
            *(self._poll_with_slot(source) for source in sources)
        )
        return {result.source: result for result in results}

    async def _poll_with_slot(self, source: Source) -> PollResult:
        async with self._source_slots:
            bind_source_context(source.address)
            try:
                return await self.poll_source(source)
            except Exception as e:
                logger.exception("Unexpected error polling source")
                return PollResult(source=source.address, status=BatchStatus.ERROR, error=str(e))
            finally:
                clear_context()

    async def poll_source(self, source: Source) -> PollResult:
        """
        Poll one source, fetching batches until its backlog is drained.

        Source errors are reported in the result, not raised; the source is
        simply retried next cycle.
        """
        result = PollResult(source=source.address)

        for _ in range(self._max_batches):
            start_time = time.monotonic()
            batch = await self._poll_batch(source, result)
            self._metrics.record_batch(
                source.address,
                result.status.value,
                latency=time.monotonic() - start_time,
            )
            if batch is None or result.status is not BatchStatus.COMMITTED:
                break
            if not batch.is_full:
                break
        else:
            logger.info("Batch budget exhausted, backlog remains", batches=result.batches)

        source.last_polled_at = datetime.now(timezone.utc)
        return result

    async def _poll_batch(self, source: Source, result: PollResult) -> EventBatch | None:
        """Run one collect/fetch/apply/commit pass. Updates result in place."""
        # Collect
        users = self._registry.users_for(source.address)
        if not users:
            result.status = BatchStatus.IDLE
            return None
        stored = await self._cursors.get_many(source.address, users)
        subscriptions = [
            Subscription(
                source=source.address,
                user_id=user_id,
                path_prefix=source.path_prefix,
                cursor=stored.get(user_id),
            )
            for user_id in users
        ]

        try:
            # Fetch
            batch = await self._client.fetch_events(source, subscriptions)
            self._set_reachable(source, True)
            result.batches += 1
            result.events += len(batch.events)
            self._metrics.record_received(source.address, len(batch.events))

            # Normalize & apply
            await self._apply_batch(source, batch, set(users), result)

        except SourceUnreachable as e:
            self._set_reachable(source, False)
            result.status = BatchStatus.UNREACHABLE
            result.error = str(e)
            logger.warning("Source unreachable", error=str(e))
            return None
        except SourceProtocolError as e:
            result.status = BatchStatus.PROTOCOL_ERROR
            result.error = str(e)
            logger.warning("Source protocol error", error=str(e))
            return None
        except ApplyFailure as e:
            result.status = BatchStatus.APPLY_FAILURE
            result.error = str(e)
            logger.error("Apply failed, batch will be retried", error=str(e))
            return None

        # Commit
        advanced = batch.advanced_cursors(stored)
        if not await asyncio.shield(self._commit(source, advanced)):
            result.status = BatchStatus.DISCARDED
            logger.info("Source deregistered during poll, discarding batch")
            return None

        result.committed_cursors.update(advanced)
        result.status = BatchStatus.COMMITTED

        logger.info(
            "Batch committed",
            events=len(batch.events),
            applied=result.applied,
            skipped=result.skipped_total,
            cursors=len(advanced),
        )
        return batch

    async def _apply_batch(
        self,
        source: Source,
        batch: EventBatch,
        requested_users: set[str],
        result: PollResult,
    ) -> None:
        normalized: list[Event | EventSkipped] = []
        for raw in batch.events:
            try:
                normalized.append(
                    self._normalizer.normalize(raw, source.path_prefix, requested_users)
                )
            except EventSkipped as e:
                normalized.append(e)

        events = [(i, item) for i, item in enumerate(normalized) if isinstance(item, Event)]
        superseded = {
            events[j][0] for j in superseded_indices([event for _, event in events])
        }
        payloads = await self._hydrate(
            source,
            [(i, event) for i, event in events
             if i not in superseded and event.kind is EventKind.WRITE],
        )

        # Apply in source order; per-event skips are consumed
        for index, item in enumerate(normalized):
            if isinstance(item, EventSkipped):
                self._skip(result, item.reason, str(item), batch.events[index].uri)
                continue
            if index in superseded:
                self._skip(result, SUPERSEDED, "superseded later in batch", item.uri)
                continue

            payload = payloads.get(index)
            if isinstance(payload, EventSkipped):
                self._skip(result, payload.reason, str(payload), item.uri)
                continue

            try:
                outcome = await self._engine.apply(item, payload, source=source.address)
            except EventSkipped as e:
                self._skip(result, e.reason, str(e), item.uri)
                continue

            result.applied += 1
            self._metrics.record_applied(item.resource_kind, outcome.action.value)

    async def _hydrate(
        self,
        source: Source,
        writes: list[tuple[int, Event]],
    ) -> dict[int, Any]:
        """
        Fetch payloads for writes, at most hydration_concurrency at a time.

        Returns:
            index -> payload dict, None (resource gone) or EventSkipped

        Raises:
            SourceUnreachable: If any fetch failed at the transport level
        """
        if not writes:
            return {}

        slots = asyncio.Semaphore(self._hydration_concurrency)

        async def fetch(event: Event) -> Any:
            async with slots:
                return await self._client.fetch_resource(source, event)

        outcomes = await asyncio.gather(
            *(fetch(event) for _, event in writes),
            return_exceptions=True,
        )

        payloads: dict[int, Any] = {}
        for (index, _), outcome in zip(writes, outcomes):
            if isinstance(outcome, EventSkipped):
                payloads[index] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                payloads[index] = outcome
        return payloads

    async def _commit(self, source: Source, cursors: dict[str, str]) -> bool:
        """Persist cursors unless the source was deregistered; False if discarded."""
        async with self._commit_locks[source.address]:
            if self._registry.get(source.address) is not source:
                return False
            await self._cursors.set_many(source.address, cursors)
        self._metrics.record_cursor_commits(source.address, len(cursors))
        return True

    def _skip(self, result: PollResult, reason: str, message: str, uri: str) -> None:
        result.count_skip(reason)
        self._metrics.record_skipped(reason)
        logger.info("Event skipped", reason=reason, uri=uri, detail=message)

    def _set_reachable(self, source: Source, reachable: bool) -> None:
        if source.is_reachable != reachable:
            logger.info("Source reachability changed", reachable=reachable)
        self._registry.mark_reachable(source.address, reachable)
        source.is_reachable = reachable
        self._metrics.set_source_reachable(source.address, reachable)

    async def health_check(self) -> dict[str, Any]:
        """Summary of service and source state."""
        return {
            "running": self._running,
            "sources": {
                source.address: {
                    "reachable": source.is_reachable,
                    "users": len(self._registry.users_for(source.address)),
                    "last_polled_at": (
                        source.last_polled_at.isoformat() if source.last_polled_at else None
                    ),
                }
                for source in self._registry.sources()
            },
        }
