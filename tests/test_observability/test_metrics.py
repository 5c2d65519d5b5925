"""Tests for Prometheus metrics and logging setup."""

import logging

import structlog
from prometheus_client import REGISTRY

from src.observability.logging import bind_context, clear_context, setup_logging
from src.observability.metrics import get_metrics


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetrics:
    def test_singleton(self):
        assert get_metrics() is get_metrics()

    def test_record_collection(self):
        metrics = get_metrics()
        before = _sample("research_collector_records_collected_total", {"source": "metrics_test"})

        metrics.record_collection("metrics_test", accepted=3, filtered=2, latency=0.5, errors=1)

        assert _sample("research_collector_records_collected_total", {"source": "metrics_test"}) == before + 3
        assert _sample("research_collector_records_filtered_total", {"source": "metrics_test"}) >= 2
        assert _sample("research_collector_collector_errors_total", {"source": "metrics_test"}) >= 1

    def test_fetch_and_cache_counters(self):
        metrics = get_metrics()
        labels = {"host": "metrics.example.com", "outcome": "success"}
        before = _sample("research_collector_fetches_total", labels)

        metrics.record_fetch("metrics.example.com", "success")
        metrics.record_cache(hit=True)

        assert _sample("research_collector_fetches_total", labels) == before + 1
        assert _sample("research_collector_cache_requests_total", {"result": "hit"}) >= 1


class TestLogging:
    def test_setup_sets_level(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        try:
            setup_logging("WARNING")
            assert root.level == logging.WARNING
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers = handlers
            root.setLevel(level)

    def test_context_binding(self):
        bind_context(topic="ai safety")
        try:
            assert structlog.contextvars.get_contextvars() == {"topic": "ai safety"}
        finally:
            clear_context()
        assert structlog.contextvars.get_contextvars() == {}
