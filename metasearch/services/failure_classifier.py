"""Failure classification, retry decisions and the diagnostic error log.

Every provider failure passes through FailureClassifier.classify(), which
maps the raw exception onto the ErrorKind taxonomy, decides whether it is
retryable, attaches a user-facing message and appends the record to a
bounded ring buffer.

Classification runs in two passes. The first pass matches exception types,
the second falls back to message heuristics for untyped errors. Within each
pass kinds are checked in priority order:
timeout, unavailable, network, api, parsing; anything else is general.
"""

import asyncio
import socket
import threading
from collections import Counter, deque
from typing import Deque, Dict, List, Mapping, Optional, Tuple

import aiohttp
import structlog

from metasearch.models.config import DiagnosticsConfig, RetryConfig
from metasearch.models.errors import (
    ApiErrorBand,
    ErrorKind,
    ErrorRecord,
    ErrorStats,
    HealthReport,
)
from metasearch.observability.metrics import PROVIDER_ERRORS
from metasearch.utils.exceptions import (
    APIError,
    InvalidInputError,
    NetworkError,
    ParsingError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from metasearch.utils.retry import RetryPolicy

logger = structlog.get_logger()

RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.API})

_TIMEOUT_TYPES = (asyncio.TimeoutError, TimeoutError, ProviderTimeoutError)
_UNAVAILABLE_TYPES = (ProviderUnavailableError, PermissionError)
_NETWORK_TYPES = (
    NetworkError,
    ConnectionError,
    socket.gaierror,
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
)
_PARSING_TYPES = (ParsingError, ValueError, aiohttp.ContentTypeError)

_MESSAGE_HINTS: Tuple[Tuple[ErrorKind, Tuple[str, ...]], ...] = (
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.UNAVAILABLE, ("cors", "security")),
    (ErrorKind.NETWORK, ("failed to fetch", "network", "connection")),
    (ErrorKind.PARSING, ("parse", "malformed", "unexpected token")),
)

_USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.TIMEOUT: "{name} took too long to respond, so the search was stopped.",
    ErrorKind.UNAVAILABLE: "{name} is unavailable due to access restrictions.",
    ErrorKind.NETWORK: "Could not connect to {name}. Check your internet connection.",
    ErrorKind.API: "{name} is having problems with its service.",
    ErrorKind.PARSING: "Results from {name} could not be read correctly.",
    ErrorKind.GENERAL: "Something went wrong with {name}.",
    ErrorKind.INVALID_INPUT: "The search request for {name} was invalid.",
}


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _api_band(status: Optional[int]) -> ApiErrorBand:
    if status == 429:
        return ApiErrorBand.RATE_LIMIT
    if status is not None and 400 <= status < 500:
        return ApiErrorBand.CLIENT
    if status is not None and 500 <= status < 600:
        return ApiErrorBand.SERVER
    return ApiErrorBand.UNKNOWN


class FailureClassifier:
    """Classifies provider errors and owns retry bookkeeping.

    Thread-safe: the error log is guarded by a lock, attempt counters by
    the RetryPolicy's own lock.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        diagnostics: Optional[DiagnosticsConfig] = None,
        display_names: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.retry_policy = RetryPolicy(retry_config)
        self.diagnostics = diagnostics or DiagnosticsConfig()
        self._display_names: Dict[str, str] = dict(display_names or {})
        self._log: Deque[ErrorRecord] = deque(maxlen=self.diagnostics.error_log_size)
        self._lock = threading.Lock()

    @property
    def max_retries(self) -> int:
        return self.retry_policy.config.max_retries

    # ==================== Classification ====================

    def classify(self, error: BaseException, provider_id: str) -> ErrorRecord:
        """Classify a raw provider error and log it.

        Args:
            error: The exception raised by (or on behalf of) the provider
            provider_id: Provider the error belongs to

        Returns:
            The classified ErrorRecord (also appended to the error log)
        """
        kind = self._kind_of(error)
        status = _status_code(error) if kind == ErrorKind.API else None

        record = ErrorRecord(
            provider_id=provider_id,
            kind=kind,
            raw_message=str(error) or type(error).__name__,
            user_message=self.user_message(kind, provider_id),
            retryable=self.is_retryable(kind),
            status_code=status,
            api_band=_api_band(status) if kind == ErrorKind.API else None,
        )

        with self._lock:
            self._log.append(record)

        PROVIDER_ERRORS.labels(provider=provider_id, kind=kind.value).inc()
        logger.warning(
            "provider_error_classified",
            provider=provider_id,
            kind=kind.value,
            error_type=type(error).__name__,
            error_message=record.raw_message,
            status_code=status,
            retryable=record.retryable,
        )
        return record

    def _kind_of(self, error: BaseException) -> ErrorKind:
        if isinstance(error, InvalidInputError):
            return ErrorKind.INVALID_INPUT
        if isinstance(error, _TIMEOUT_TYPES):
            return ErrorKind.TIMEOUT
        if isinstance(error, _UNAVAILABLE_TYPES):
            return ErrorKind.UNAVAILABLE
        if isinstance(error, _NETWORK_TYPES):
            return ErrorKind.NETWORK
        if isinstance(error, aiohttp.ContentTypeError):
            return ErrorKind.PARSING
        if isinstance(error, (APIError, aiohttp.ClientResponseError)):
            return ErrorKind.API
        if _status_code(error) is not None:
            return ErrorKind.API
        if isinstance(error, _PARSING_TYPES):
            return ErrorKind.PARSING

        message = str(error).lower()
        for kind, hints in _MESSAGE_HINTS:
            if any(hint in message for hint in hints):
                return kind

        return ErrorKind.GENERAL

    @staticmethod
    def is_retryable(kind: ErrorKind) -> bool:
        return kind in RETRYABLE_KINDS

    def user_message(self, kind: ErrorKind, provider_id: str) -> str:
        """Display message built only from the kind and provider display name."""
        return _USER_MESSAGES[kind].format(name=self.display_name(provider_id))

    def display_name(self, provider_id: str) -> str:
        return self._display_names.get(provider_id, provider_id)

    def register_display_name(self, provider_id: str, display_name: str) -> None:
        self._display_names[provider_id] = display_name

    # ==================== Retry Bookkeeping ====================

    def next_backoff_delay(self, provider_id: str, attempt: Optional[int] = None) -> int:
        """Backoff in milliseconds before the provider's next retry.

        Args:
            provider_id: Provider to compute the delay for
            attempt: Retries already made; defaults to the provider's counter
        """
        if attempt is None:
            attempt = self.retry_policy.attempts(provider_id)
        return self.retry_policy.calculate_delay(attempt)

    def record_attempt(self, provider_id: str) -> int:
        return self.retry_policy.record_attempt(provider_id)

    def reset_attempts(self, provider_id: str) -> None:
        self.retry_policy.reset_attempts(provider_id)

    def attempts(self, provider_id: str) -> int:
        return self.retry_policy.attempts(provider_id)

    # ==================== Diagnostics ====================

    def error_log(self) -> List[ErrorRecord]:
        with self._lock:
            return list(self._log)

    def error_stats(self) -> ErrorStats:
        """Counts by kind and by provider, plus the most recent records."""
        records = self.error_log()

        by_kind = Counter(r.kind.value for r in records)
        by_provider = Counter(r.provider_id for r in records)

        return ErrorStats(
            total=len(records),
            by_kind=dict(by_kind),
            by_provider=dict(by_provider),
            recent=records[-self.diagnostics.health_window :],
        )

    def health_check(self) -> HealthReport:
        """Judge health from the recent error window.

        Unhealthy when the window holds too many errors overall, or when one
        provider owns more than the threshold of them.
        """
        stats = self.error_stats()
        recent_by_provider = Counter(r.provider_id for r in stats.recent)

        unhealthy = sorted(
            pid
            for pid, count in recent_by_provider.items()
            if count > self.diagnostics.unhealthy_threshold
        )

        most_problematic = None
        if stats.by_provider:
            most_problematic = max(
                sorted(stats.by_provider), key=lambda pid: stats.by_provider[pid]
            )

        healthy = (
            len(stats.recent) < self.diagnostics.unhealthy_threshold and not unhealthy
        )

        return HealthReport(
            healthy=healthy,
            recent_error_count=len(stats.recent),
            total_error_count=stats.total,
            most_problematic_provider=most_problematic,
            unhealthy_providers=unhealthy,
            recommendations=self._recommendations(stats.by_kind),
        )

    @staticmethod
    def _recommendations(by_kind: Mapping[str, int]) -> List[str]:
        recommendations = []

        if by_kind.get(ErrorKind.NETWORK.value, 0) > 5:
            recommendations.append("Check the network connection")

        if by_kind.get(ErrorKind.UNAVAILABLE.value, 0) > 3:
            recommendations.append("Consider routing blocked providers through a proxy")

        if by_kind.get(ErrorKind.TIMEOUT.value, 0) > 3:
            recommendations.append("Consider raising the provider timeout")

        return recommendations

    def clear_error_log(self) -> None:
        """Drop all error records and attempt counters."""
        with self._lock:
            self._log.clear()
        self.retry_policy.reset_all()
