"""Tests for Prometheus metrics and logging setup."""

import structlog
from prometheus_client import CollectorRegistry

from indexer.config.settings import Settings
from indexer.observability.logging import bind_source_context, clear_context, setup_logging
from indexer.observability.metrics import MetricsCollector


class TestMetricsCollector:
    """Tests for MetricsCollector on a private registry."""

    def test_batch_and_latency(self, metrics: MetricsCollector, metrics_registry: CollectorRegistry):
        metrics.record_batch("https://hs.example", "committed", latency=0.2)
        metrics.record_batch("https://hs.example", "unreachable")

        get = metrics_registry.get_sample_value
        assert get("indexer_batches_total", {"source": "https://hs.example", "status": "committed"}) == 1.0
        assert get("indexer_batches_total", {"source": "https://hs.example", "status": "unreachable"}) == 1.0
        assert get("indexer_poll_latency_seconds_count", {"source": "https://hs.example"}) == 1.0

    def test_zero_counts_not_recorded(
        self, metrics: MetricsCollector, metrics_registry: CollectorRegistry
    ):
        metrics.record_received("https://hs.example", 0)
        metrics.record_cursor_commits("https://hs.example", 0)

        get = metrics_registry.get_sample_value
        assert get("indexer_events_received_total", {"source": "https://hs.example"}) is None
        assert get("indexer_cursor_commits_total", {"source": "https://hs.example"}) is None

    def test_applied_and_skipped(
        self, metrics: MetricsCollector, metrics_registry: CollectorRegistry
    ):
        metrics.record_applied("post", "upsert")
        metrics.record_applied("post", "upsert")
        metrics.record_skipped("malformed_id")

        get = metrics_registry.get_sample_value
        assert get("indexer_events_applied_total", {"kind": "post", "action": "upsert"}) == 2.0
        assert get("indexer_events_skipped_total", {"reason": "malformed_id"}) == 1.0

    def test_reachability_gauge(
        self, metrics: MetricsCollector, metrics_registry: CollectorRegistry
    ):
        metrics.set_source_reachable("https://hs.example", False)
        assert metrics_registry.get_sample_value(
            "indexer_source_reachable", {"source": "https://hs.example"}
        ) == 0.0


class TestLogging:
    """Tests for structlog configuration."""

    def test_setup_and_context(self, test_settings: Settings):
        setup_logging(test_settings)
        try:
            bind_source_context("https://hs.example", user="alice")
            context = structlog.contextvars.get_contextvars()
            assert context == {"source": "https://hs.example", "user": "alice"}
        finally:
            clear_context()

        assert structlog.contextvars.get_contextvars() == {}
