"""Observability: correlation IDs, structured logging and Prometheus metrics.

Usage:
    from metasearch.observability import configure_logging, get_logger

    configure_logging(level="INFO", json_output=False)
    logger = get_logger("cli")
"""

from metasearch.observability.context import (
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
    correlation_id_context,
)
from metasearch.observability.logging import (
    get_logger,
    configure_logging,
    add_correlation_id_processor,
    bind_context,
    clear_context,
)
from metasearch.observability.metrics import (
    AGGREGATIONS_TOTAL,
    PROVIDER_REQUESTS,
    PROVIDER_RETRIES,
    PROVIDER_ERRORS,
    CACHE_OPERATIONS,
    CACHE_ENTRIES,
    SCHEDULER_JOBS,
    AGGREGATION_DURATION,
    PROVIDER_LATENCY,
    get_metrics_text,
)

__all__ = [
    # Context
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    # Logging
    "get_logger",
    "configure_logging",
    "add_correlation_id_processor",
    "bind_context",
    "clear_context",
    # Metrics
    "AGGREGATIONS_TOTAL",
    "PROVIDER_REQUESTS",
    "PROVIDER_RETRIES",
    "PROVIDER_ERRORS",
    "CACHE_OPERATIONS",
    "CACHE_ENTRIES",
    "SCHEDULER_JOBS",
    "AGGREGATION_DURATION",
    "PROVIDER_LATENCY",
    "get_metrics_text",
]
