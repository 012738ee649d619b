"""Observability layer - logging and metrics."""

from indexer.observability.logging import setup_logging
from indexer.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
