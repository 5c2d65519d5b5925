"""
Prometheus metrics for monitoring the collection pipeline.

Defines and exposes metrics for:
- Records collected and filtered per source
- Fetch outcomes and retries per host
- Result cache hits and misses
- Collection latency

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    Counter,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for collection latency (in seconds); collections are network-bound
LATENCY_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the research collector.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_collection("forum", accepted=12, filtered=30, latency=4.2)
        metrics.record_fetch("oauth.reddit.com", "success")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.records_collected = Counter(
            "research_collector_records_collected_total",
            "Total records produced by collectors",
            ["source"],
        )

        self.records_filtered = Counter(
            "research_collector_records_filtered_total",
            "Total candidates rejected by quality filters",
            ["source"],
        )

        self.collector_errors = Counter(
            "research_collector_collector_errors_total",
            "Total partial failures inside collectors",
            ["source"],
        )

        self.fetches = Counter(
            "research_collector_fetches_total",
            "Outbound HTTP requests by outcome",
            ["host", "outcome"],  # outcome: success, transient, fatal
        )

        self.fetch_retries = Counter(
            "research_collector_fetch_retries_total",
            "Retries scheduled after transient failures",
            ["host"],
        )

        self.cache_requests = Counter(
            "research_collector_cache_requests_total",
            "Result cache lookups",
            ["result"],  # hit, miss
        )

        self.collection_latency = Histogram(
            "research_collector_collection_latency_seconds",
            "Time to run one collector",
            ["source"],
            buckets=LATENCY_BUCKETS,
        )

        self._server_started = False

    def start_server(self, port: int | None = None) -> None:
        """Start the Prometheus HTTP endpoint (once per process)."""
        if self._server_started:
            return
        port = port or get_settings().metrics_port
        start_http_server(port)
        self._server_started = True
        logger.info(f"Metrics server started on port {port}")

    def record_collection(
        self,
        source: str,
        accepted: int,
        filtered: int,
        latency: float,
        errors: int = 0,
    ) -> None:
        """Record the outcome of one collector run."""
        self.records_collected.labels(source=source).inc(accepted)
        self.records_filtered.labels(source=source).inc(filtered)
        if errors:
            self.collector_errors.labels(source=source).inc(errors)
        self.collection_latency.labels(source=source).observe(latency)

    def record_fetch(self, host: str, outcome: str) -> None:
        self.fetches.labels(host=host, outcome=outcome).inc()

    def record_retry(self, host: str) -> None:
        self.fetch_retries.labels(host=host).inc()

    def record_cache(self, hit: bool) -> None:
        self.cache_requests.labels(result="hit" if hit else "miss").inc()


_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector, creating it on first use."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
