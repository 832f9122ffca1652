"""Prometheus metrics definitions for the metasearch engine.

Defines counters, gauges, and histograms for monitoring:
- Provider request outcomes and latency
- Retry volume
- Failure classification
- Cache performance

Usage:
    from metasearch.observability.metrics import (
        PROVIDER_REQUESTS,
        AGGREGATION_DURATION,
    )

    # Increment counter
    PROVIDER_REQUESTS.labels(provider="duckduckgo", status="success").inc()

    # Track histogram
    with AGGREGATION_DURATION.time():
        await coordinator.aggregate("cats", "en")
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry to avoid conflicts with default registry
REGISTRY = CollectorRegistry(auto_describe=True)

# =============================================================================
# COUNTERS - Monotonically increasing values
# =============================================================================

AGGREGATIONS_TOTAL = Counter(
    name="metasearch_aggregations_total",
    documentation="Total aggregate() calls that completed",
    registry=REGISTRY,
)

PROVIDER_REQUESTS = Counter(
    name="metasearch_provider_requests_total",
    documentation="Terminal provider outcomes",
    labelnames=["provider", "status"],  # success, error, cached
    registry=REGISTRY,
)

PROVIDER_RETRIES = Counter(
    name="metasearch_provider_retries_total",
    documentation="Scheduled provider retries",
    labelnames=["provider"],
    registry=REGISTRY,
)

PROVIDER_ERRORS = Counter(
    name="metasearch_provider_errors_total",
    documentation="Classified provider errors by kind",
    labelnames=["provider", "kind"],
    registry=REGISTRY,
)

CACHE_OPERATIONS = Counter(
    name="metasearch_cache_operations_total",
    documentation="Total cache operations",
    labelnames=["operation"],  # hit, miss, set, evict, expire
    registry=REGISTRY,
)

# =============================================================================
# GAUGES - Values that can go up and down
# =============================================================================

CACHE_ENTRIES = Gauge(
    name="metasearch_cache_entries",
    documentation="Entries currently held by the result cache",
    registry=REGISTRY,
)

SCHEDULER_JOBS = Gauge(
    name="metasearch_scheduler_jobs",
    documentation="Number of scheduled maintenance jobs",
    labelnames=["status"],  # pending, running
    registry=REGISTRY,
)

# =============================================================================
# HISTOGRAMS - Distribution of values
# =============================================================================

LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, float("inf"))

AGGREGATION_DURATION = Histogram(
    name="metasearch_aggregation_duration_seconds",
    documentation="Wall time of aggregate() calls in seconds",
    buckets=LATENCY_BUCKETS,
    registry=REGISTRY,
)

PROVIDER_LATENCY = Histogram(
    name="metasearch_provider_latency_seconds",
    documentation="Latency of successful provider searches in seconds",
    labelnames=["provider"],
    buckets=LATENCY_BUCKETS,
    registry=REGISTRY,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_metrics_text() -> bytes:
    """Generate Prometheus metrics in text format.

    Returns:
        UTF-8 encoded metrics in Prometheus exposition format.
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Content-Type header value for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
