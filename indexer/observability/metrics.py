"""
Prometheus metrics for monitoring the indexing pipeline.

Defines and exposes metrics for:
- Events received, applied and skipped
- Batch outcomes per source
- Poll latency
- Source reachability
- Cursor commits

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from indexer.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the indexer.

    Usage:
        metrics = get_metrics()
        metrics.start_server()
        metrics.record_applied("post", "upsert")
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self._registry = registry or REGISTRY

        self.events_received = Counter(
            "indexer_events_received_total",
            "Raw events received from source event streams",
            ["source"],
            registry=self._registry,
        )

        self.events_applied = Counter(
            "indexer_events_applied_total",
            "Events applied to the record store",
            ["kind", "action"],  # action: upsert, tombstone, soft_delete
            registry=self._registry,
        )

        self.events_skipped = Counter(
            "indexer_events_skipped_total",
            "Events consumed without being applied",
            ["reason"],
            registry=self._registry,
        )

        self.batches = Counter(
            "indexer_batches_total",
            "Event batches by outcome",
            ["source", "status"],  # committed, unreachable, protocol_error, apply_failure, discarded
            registry=self._registry,
        )

        self.poll_latency = Histogram(
            "indexer_poll_latency_seconds",
            "Time to fetch, apply and commit one batch",
            ["source"],
            buckets=LATENCY_BUCKETS,
            registry=self._registry,
        )

        self.source_reachable = Gauge(
            "indexer_source_reachable",
            "Source reachability (1=reachable, 0=unreachable)",
            ["source"],
            registry=self._registry,
        )

        self.cursor_commits = Counter(
            "indexer_cursor_commits_total",
            "Per-user cursor advances persisted",
            ["source"],
            registry=self._registry,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """Start Prometheus metrics HTTP server."""
        port = port or get_settings().metrics_port
        start_http_server(port, registry=self._registry)
        logger.info(f"Prometheus metrics server started on port {port}")

    def record_received(self, source: str, count: int) -> None:
        if count:
            self.events_received.labels(source=source).inc(count)

    def record_applied(self, kind: str, action: str) -> None:
        self.events_applied.labels(kind=kind, action=action).inc()

    def record_skipped(self, reason: str) -> None:
        self.events_skipped.labels(reason=reason).inc()

    def record_batch(
        self,
        source: str,
        status: str,
        latency: float | None = None,
    ) -> None:
        """
        Record the outcome of one batch.

        Args:
            source: Source address
            status: Batch status (committed, unreachable, protocol_error,
                apply_failure, discarded)
            latency: Optional end-to-end batch latency in seconds
        """
        self.batches.labels(source=source, status=status).inc()
        if latency is not None:
            self.poll_latency.labels(source=source).observe(latency)

    def set_source_reachable(self, source: str, reachable: bool) -> None:
        self.source_reachable.labels(source=source).set(1 if reachable else 0)

    def record_cursor_commits(self, source: str, count: int) -> None:
        if count:
            self.cursor_commits.labels(source=source).inc(count)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
