"""Aggregation coordinator: concurrent fan-out over all registered providers.

For one query the coordinator starts one task per provider, and each task
resolves its provider independently:

    cache hit  -> done
    cache miss -> readiness checks -> search under a timeout
               -> success: cache it, done
               -> failure: classify -> retry after backoff, or done

The call waits for every task to settle (including retries) and never fails
because of a provider. Only invalid input raises.
"""

import asyncio
import inspect
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set, Union

import structlog
from pydantic import ValidationError

from metasearch.models.aggregation import (
    ActiveSearch,
    AggregatedResult,
    HistoryEntry,
    ProviderOutcome,
    RetryState,
    SearchStats,
)
from metasearch.models.config import AggregatorConfig, MetasearchConfig
from metasearch.models.query import ProviderResult, ProviderStatus, Query
from metasearch.observability.context import correlation_id_context
from metasearch.observability.metrics import (
    AGGREGATION_DURATION,
    AGGREGATIONS_TOTAL,
    PROVIDER_LATENCY,
    PROVIDER_REQUESTS,
    PROVIDER_RETRIES,
)
from metasearch.providers.base import SearchProvider
from metasearch.providers.registry import ProviderHealth, ProviderRegistry, build_registry
from metasearch.services.failure_classifier import FailureClassifier
from metasearch.services.result_cache import ResultCache
from metasearch.utils.exceptions import (
    InvalidInputError,
    ParsingError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from metasearch.utils.retry import RetryScheduler, ScheduledRetry

logger = structlog.get_logger()

SettledCallback = Callable[[str, ProviderOutcome], Union[None, Awaitable[None]]]


class AggregationCoordinator:
    """Fans a query out to every provider and merges the outcomes.

    Features:
    - Per-provider cache lookup before any network call
    - Independent per-provider timeout
    - Classified failures with bounded, backed-off retries
    - Settle-all fan-in: one provider's failure never affects another
    - Progressive on_provider_settled notifications
    - Bounded search history and active search tracking
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        cache: Optional[ResultCache] = None,
        classifier: Optional[FailureClassifier] = None,
        config: Optional[AggregatorConfig] = None,
        retry_scheduler: Optional[RetryScheduler] = None,
        on_provider_settled: Optional[SettledCallback] = None,
    ):
        """Initialize the coordinator with its collaborators.

        Args:
            providers: Registered providers; their order fixes result order.
            cache: Result cache (a default one is created if None).
            classifier: Failure classifier (a default one is created if None).
            config: Coordinator settings.
            retry_scheduler: Awaits retry delays (asyncio.sleep by default).
            on_provider_settled: Called once per provider per call with the
                terminal outcome. May be sync or async.
        """
        self.providers = providers
        self.cache = cache if cache is not None else ResultCache()
        self.classifier = classifier or FailureClassifier()
        self.config = config or AggregatorConfig()
        self.retry_scheduler = retry_scheduler or RetryScheduler()
        self.on_provider_settled = on_provider_settled

        for provider_id, name in providers.display_names().items():
            self.classifier.register_display_name(provider_id, name)

        self._history: Deque[HistoryEntry] = deque(maxlen=self.config.history_size)
        self._active: Dict[str, ActiveSearch] = {}

    @classmethod
    def from_config(
        cls,
        config: MetasearchConfig,
        on_provider_settled: Optional[SettledCallback] = None,
    ) -> "AggregationCoordinator":
        """Build a coordinator and all its collaborators from configuration."""
        registry = build_registry(
            config.providers,
            request_timeout_seconds=config.aggregator.provider_timeout_seconds,
        )
        return cls(
            providers=registry,
            cache=ResultCache(config.cache),
            classifier=FailureClassifier(config.retry, config.diagnostics),
            config=config.aggregator,
            on_provider_settled=on_provider_settled,
        )

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start background maintenance (the cache sweep)."""
        self.cache.start()
        logger.info("coordinator_started", providers=self.providers.ids)

    async def shutdown(self) -> None:
        """Stop background maintenance and release in-memory state."""
        self.cache.shutdown()
        self._history.clear()
        self._active.clear()
        logger.info("coordinator_stopped")

    async def __aenter__(self) -> "AggregationCoordinator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ==================== Public API ====================

    async def aggregate(
        self,
        query: str,
        language: str,
        on_provider_settled: Optional[SettledCallback] = None,
    ) -> AggregatedResult:
        """Search every registered provider and merge the outcomes.

        Args:
            query: Search text; must be non-empty after trimming.
            language: Language code passed to every provider.
            on_provider_settled: Overrides the coordinator-level callback
                for this call.

        Returns:
            AggregatedResult with one slot per registered provider.

        Raises:
            InvalidInputError: If the query text is empty.
        """
        q = self._build_query(query, language)
        callback = on_provider_settled or self.on_provider_settled
        notified: Set[str] = set()
        started = time.monotonic()

        with correlation_id_context(q.correlation_id):
            provider_ids = self.providers.ids
            logger.info(
                "aggregation_started",
                query=q.text[:50],
                language=q.language,
                providers=len(provider_ids),
            )

            self._active[q.correlation_id] = ActiveSearch(
                correlation_id=q.correlation_id, query=q.text, language=q.language
            )
            try:
                settled = await asyncio.gather(
                    *(
                        self._resolve(
                            pid, self.providers.get(pid), q, callback, notified
                        )
                        for pid in provider_ids
                    ),
                    return_exceptions=True,
                )
            finally:
                self._active.pop(q.correlation_id, None)

            outcomes: List[ProviderOutcome] = []
            for provider_id, item in zip(provider_ids, settled):
                if isinstance(item, ProviderOutcome):
                    outcomes.append(item)
                    continue

                # The provider task itself crashed; report it in its slot
                logger.error(
                    "provider_task_crashed", provider=provider_id, error=repr(item)
                )
                outcome = ProviderOutcome(
                    provider_id=provider_id,
                    status=ProviderStatus.ERROR,
                    error=self.classifier.classify(item, provider_id),
                    attempts=0,
                )
                PROVIDER_REQUESTS.labels(provider=provider_id, status="error").inc()
                await self._notify(callback, provider_id, outcome, notified)
                outcomes.append(outcome)

            elapsed = time.monotonic() - started
            result = AggregatedResult.build(q, outcomes, int(elapsed * 1000))

            AGGREGATIONS_TOTAL.inc()
            AGGREGATION_DURATION.observe(elapsed)
            self._add_to_history(result)

            logger.info(
                "aggregation_complete",
                total_latency_ms=result.total_latency_ms,
                succeeded=result.summary.succeeded,
                failed=result.summary.failed,
                total_items=result.summary.total_items,
            )

        return result

    async def search_provider(
        self,
        provider_id: str,
        query: str,
        language: str,
        on_provider_settled: Optional[SettledCallback] = None,
    ) -> ProviderOutcome:
        """Resolve a single provider with the same cache and retry flow.

        Raises:
            InvalidInputError: If the query text is empty.
            UnknownProviderError: If provider_id is not registered.
        """
        q = self._build_query(query, language)
        provider = self.providers.get(provider_id)

        with correlation_id_context(q.correlation_id):
            return await self._resolve(
                provider_id,
                provider,
                q,
                on_provider_settled or self.on_provider_settled,
            )

    def get_direct_search_urls(self, query: str, language: str) -> Dict[str, str]:
        """Links that open the same search on each provider's own site."""
        q = self._build_query(query, language)
        return {
            pid: provider.get_direct_search_url(q, q.language)
            for pid, provider in self.providers.items()
        }

    async def health_check(self) -> Dict[str, ProviderHealth]:
        """Availability and rate-limit readiness of every provider."""
        return self.providers.health_check()

    def get_search_history(self) -> List[HistoryEntry]:
        """Completed aggregations, newest first."""
        return list(reversed(self._history))

    def get_active_searches(self) -> List[ActiveSearch]:
        return list(self._active.values())

    def get_search_stats(self) -> SearchStats:
        history = self.get_search_history()
        if not history:
            return SearchStats()

        language_counts: Dict[str, int] = {}
        for entry in history:
            language_counts[entry.language] = language_counts.get(entry.language, 0) + 1

        total_latency = sum(entry.total_latency_ms for entry in history)

        return SearchStats(
            total_searches=len(history),
            average_latency_ms=round(total_latency / len(history)),
            language_counts=language_counts,
            recent_searches=history[:10],
        )

    # ==================== Per-provider Flow ====================

    async def _resolve(
        self,
        provider_id: str,
        provider: SearchProvider,
        query: Query,
        callback: Optional[SettledCallback],
        notified: Optional[Set[str]] = None,
    ) -> ProviderOutcome:
        """Drive one provider to its terminal outcome and notify once."""
        state = RetryState(provider_id=provider_id)
        key = ResultCache.make_key(provider_id, query.language, query.normalized_text)
        invocations = 0

        self.classifier.reset_attempts(provider_id)

        while True:
            cached = self.cache.get(key)
            if cached is not None:
                outcome = ProviderOutcome(
                    provider_id=provider_id,
                    status=ProviderStatus.SUCCESS,
                    data=cached,
                    from_cache=True,
                    attempts=invocations,
                )
                PROVIDER_REQUESTS.labels(provider=provider_id, status="cached").inc()
                break

            try:
                self._check_ready(provider_id, provider)
                invocations += 1
                result = await self._invoke(provider_id, provider, query)
            except Exception as e:
                record = self.classifier.classify(e, provider_id)

                if record.retryable and self.classifier.retry_policy.can_retry(
                    state.attempts
                ):
                    delay_ms = self.classifier.next_backoff_delay(
                        provider_id, attempt=state.attempts
                    )
                    state.attempts += 1
                    self.classifier.record_attempt(provider_id)
                    PROVIDER_RETRIES.labels(provider=provider_id).inc()

                    await self.retry_scheduler.defer(
                        ScheduledRetry(
                            provider_id=provider_id,
                            attempt=state.attempts,
                            delay_ms=delay_ms,
                        )
                    )
                    continue

                outcome = ProviderOutcome(
                    provider_id=provider_id,
                    status=ProviderStatus.ERROR,
                    error=record,
                    attempts=invocations,
                )
                PROVIDER_REQUESTS.labels(provider=provider_id, status="error").inc()
                logger.warning(
                    "provider_failed",
                    provider=provider_id,
                    kind=record.kind.value,
                    attempts=invocations,
                )
                break

            try:
                self.cache.set(key, result)
            except Exception as e:
                # A result that cannot be cached is still a success
                logger.warning(
                    "cache_store_failed", provider=provider_id, error=str(e)
                )
            self.classifier.reset_attempts(provider_id)
            state.attempts = 0

            outcome = ProviderOutcome(
                provider_id=provider_id,
                status=ProviderStatus.SUCCESS,
                data=result,
                attempts=invocations,
            )
            PROVIDER_REQUESTS.labels(provider=provider_id, status="success").inc()
            PROVIDER_LATENCY.labels(provider=provider_id).observe(
                result.latency_ms / 1000.0
            )
            break

        await self._notify(callback, provider_id, outcome, notified)
        return outcome

    @staticmethod
    def _check_ready(provider_id: str, provider: SearchProvider) -> None:
        """Raise ProviderUnavailableError if the provider refuses requests."""
        if not provider.is_available():
            raise ProviderUnavailableError(
                f"{provider_id} is not available", provider_id=provider_id
            )
        if not provider.check_rate_limit():
            raise ProviderUnavailableError(
                f"{provider_id} rate limit reached", provider_id=provider_id
            )

    async def _invoke(
        self, provider_id: str, provider: SearchProvider, query: Query
    ) -> ProviderResult:
        """Call provider.search under the configured deadline."""
        timeout = self.config.provider_timeout_seconds
        started = time.monotonic()

        try:
            result = await asyncio.wait_for(
                provider.search(query, query.language), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"{provider_id} did not respond within {timeout}s",
                provider_id=provider_id,
            ) from e

        if not isinstance(result, ProviderResult):
            raise ParsingError(
                f"{provider_id} returned {type(result).__name__}, expected ProviderResult",
                provider_id=provider_id,
            )
        if result.status == ProviderStatus.ERROR:
            raise ProviderError(
                f"{provider_id} reported an error status", provider_id=provider_id
            )

        update: Dict[str, object] = {}
        if result.provider_id != provider_id:
            update["provider_id"] = provider_id
        if result.latency_ms == 0:
            update["latency_ms"] = int((time.monotonic() - started) * 1000)

        return result.model_copy(update=update) if update else result

    async def _notify(
        self,
        callback: Optional[SettledCallback],
        provider_id: str,
        outcome: ProviderOutcome,
        notified: Optional[Set[str]] = None,
    ) -> None:
        """Invoke the settled callback at most once per provider per call."""
        if callback is None:
            return
        if notified is not None:
            if provider_id in notified:
                return
            notified.add(provider_id)

        try:
            maybe_awaitable = callback(provider_id, outcome)
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        except Exception:
            logger.exception("settled_callback_failed", provider=provider_id)

    # ==================== Helpers ====================

    @staticmethod
    def _build_query(text: str, language: str) -> Query:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("Search query cannot be empty")

        try:
            return Query(text=text, language=language)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid query: {e}") from e

    def _add_to_history(self, result: AggregatedResult) -> None:
        if self.config.history_size == 0:
            return

        self._history.append(
            HistoryEntry(
                query=result.query.text,
                language=result.language,
                total_latency_ms=result.total_latency_ms,
                succeeded=result.summary.succeeded,
                total_items=result.summary.total_items,
            )
        )
