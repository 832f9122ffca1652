"""Tests for AggregationCoordinator fan-out, retry and settle-all behavior."""

import asyncio
from collections import Counter

import pytest

from metasearch.models.config import (
    AggregatorConfig,
    MetasearchConfig,
    ProviderSettings,
    ProviderType,
    RetryConfig,
)
from metasearch.models.errors import ErrorKind
from metasearch.models.query import ProviderResult, ProviderStatus, SearchItem
from metasearch.observability.context import get_correlation_id
from metasearch.providers.duckduckgo import DuckDuckGoProvider
from metasearch.providers.registry import ProviderRegistry
from metasearch.services.aggregation_coordinator import AggregationCoordinator
from metasearch.services.failure_classifier import FailureClassifier
from metasearch.services.result_cache import ResultCache
from metasearch.utils.exceptions import (
    APIError,
    InvalidInputError,
    NetworkError,
    ParsingError,
    UnknownProviderError,
)
from metasearch.utils.retry import RetryScheduler


def build_coordinator(
    providers,
    sleep,
    retry=None,
    aggregator=None,
    callback=None,
    cache=None,
    on_retry=None,
):
    registry = ProviderRegistry()
    for provider in providers:
        registry.register(provider)

    return AggregationCoordinator(
        providers=registry,
        cache=cache if cache is not None else ResultCache(),
        classifier=FailureClassifier(retry_config=retry),
        config=aggregator,
        retry_scheduler=RetryScheduler(sleep=sleep, on_retry=on_retry),
        on_provider_settled=callback,
    )


class TestAggregateSuccess:
    """Tests for the all-success path."""

    @pytest.mark.asyncio
    async def test_two_providers_succeed(self, fake_provider, recording_sleep):
        """Should report both providers and sum their items."""
        a = fake_provider("alpha")
        b = fake_provider("beta")
        coordinator = build_coordinator([a, b], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        assert list(result.per_provider) == ["alpha", "beta"]
        assert result.summary.attempted == 2
        assert result.summary.succeeded == 2
        assert result.summary.failed == 0
        assert result.summary.total_items == 2
        assert result.language == "en"
        assert result.query.text == "cats"
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_success_populates_cache(self, fake_provider, recording_sleep):
        """Should cache each successful provider result."""
        a = fake_provider("alpha")
        cache = ResultCache()
        coordinator = build_coordinator([a], recording_sleep, cache=cache)

        await coordinator.aggregate("Cats", "en")

        assert ResultCache.make_key("alpha", "en", "cats") in cache

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, fake_provider, recording_sleep):
        """Should not call the provider again for an equivalent query."""
        a = fake_provider("alpha")
        coordinator = build_coordinator([a], recording_sleep)

        await coordinator.aggregate("cats", "en")
        result = await coordinator.aggregate("  CATS ", "en")

        assert len(a.calls) == 1
        assert result.per_provider["alpha"].from_cache is True
        assert result.per_provider["alpha"].attempts == 0

    @pytest.mark.asyncio
    async def test_empty_registry(self, recording_sleep):
        """Should return an empty, consistent result with no providers."""
        coordinator = build_coordinator([], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        assert result.per_provider == {}
        assert result.summary.attempted == 0
        assert result.summary.succeeded == 0


class TestAggregateCache:
    """Tests for cache interaction."""

    @pytest.mark.asyncio
    async def test_preseeded_cache_skips_provider(
        self, fake_provider, result_factory, recording_sleep
    ):
        """Should return the cached payload without invoking search."""
        a = fake_provider("alpha")
        cache = ResultCache()
        cached = result_factory("alpha", count=3)
        cache.set(ResultCache.make_key("alpha", "en", "cats"), cached)
        coordinator = build_coordinator([a], recording_sleep, cache=cache)

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert a.calls == []
        assert outcome.status == ProviderStatus.SUCCESS
        assert outcome.from_cache is True
        assert outcome.data == cached
        assert result.summary.total_items == 3

    @pytest.mark.asyncio
    async def test_cache_is_per_language(self, fake_provider, recording_sleep):
        """Should not serve an entry cached for another language."""
        a = fake_provider("alpha")
        coordinator = build_coordinator([a], recording_sleep)

        await coordinator.aggregate("cats", "en")
        result = await coordinator.aggregate("cats", "de")

        assert len(a.calls) == 2
        assert result.per_provider["alpha"].from_cache is False

    @pytest.mark.asyncio
    async def test_retry_rechecks_cache(
        self, fake_provider, result_factory, recording_sleep
    ):
        """Should use a cache entry that appeared while waiting to retry."""
        a = fake_provider("alpha", outcomes=[NetworkError("reset")])
        cache = ResultCache()
        seeded = result_factory("alpha", count=2)

        def seed(retry):
            cache.set(ResultCache.make_key("alpha", "en", "cats"), seeded)

        coordinator = build_coordinator(
            [a], recording_sleep, cache=cache, on_retry=seed
        )

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert len(a.calls) == 1
        assert outcome.from_cache is True
        assert outcome.data == seeded

    @pytest.mark.asyncio
    async def test_uncacheable_result_is_still_success(
        self, fake_provider, recording_sleep
    ):
        """Should keep a successful result when storing it in the cache fails."""
        unserializable = ProviderResult(
            provider_id="alpha",
            items=[
                SearchItem(
                    title="t", url="https://x", provider_fields={"raw": object}
                )
            ],
            latency_ms=3,
        )
        a = fake_provider("alpha", outcomes=[unserializable])
        cache = ResultCache()
        settled = []
        coordinator = build_coordinator(
            [a],
            recording_sleep,
            cache=cache,
            callback=lambda pid, outcome: settled.append((pid, outcome.status)),
        )

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert outcome.status == ProviderStatus.SUCCESS
        assert outcome.data.items[0].title == "t"
        assert len(a.calls) == 1
        assert len(cache) == 0
        assert settled == [("alpha", ProviderStatus.SUCCESS)]


class TestAggregateInvalidInput:
    """Tests for input validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text,language", [("", "en"), ("   ", "en"), ("\t\n", "de")]
    )
    async def test_rejects_before_any_work(
        self, fake_provider, recording_sleep, text, language
    ):
        """Should raise before touching the cache or any provider."""
        a = fake_provider("alpha")
        cache = ResultCache()
        coordinator = build_coordinator([a], recording_sleep, cache=cache)

        with pytest.raises(InvalidInputError):
            await coordinator.aggregate(text, language)

        assert a.calls == []
        stats = cache.stats()
        assert stats.hits == 0
        assert stats.misses == 0
        assert coordinator.get_search_history() == []

    @pytest.mark.asyncio
    async def test_long_query_aggregates_normally(
        self, fake_provider, recording_sleep
    ):
        """Should accept any non-blank query regardless of length."""
        a = fake_provider("alpha")
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats " * 500, "en")

        assert result.summary.attempted == 1
        assert result.per_provider["alpha"].status == ProviderStatus.SUCCESS
        assert len(a.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("language", ["en-US-x-privateuse", ""])
    async def test_any_language_code_is_passed_through(
        self, fake_provider, recording_sleep, language
    ):
        a = fake_provider("alpha")
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", language)

        assert result.language == language
        assert result.per_provider["alpha"].status == ProviderStatus.SUCCESS
        assert a.calls[0].language == language


class TestAggregateRetry:
    """Tests for retry scheduling and bounds."""

    @pytest.mark.asyncio
    async def test_retry_bound(self, fake_provider, recording_sleep):
        """Should stop after the initial call plus max_retries retries."""
        a = fake_provider("alpha", error=NetworkError("connection reset"))
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert len(a.calls) == 4
        assert outcome.status == ProviderStatus.ERROR
        assert outcome.attempts == 4
        assert outcome.error.kind == ErrorKind.NETWORK
        assert recording_sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_delays_never_decrease(self, fake_provider, recording_sleep):
        """Should apply non-decreasing backoff up to the cap."""
        a = fake_provider("alpha", error=APIError("bad gateway", status_code=502))
        coordinator = build_coordinator(
            [a], recording_sleep, retry=RetryConfig(max_retries=6)
        )

        await coordinator.aggregate("cats", "en")

        delays = recording_sleep.delays
        assert len(a.calls) == 7
        assert delays == sorted(delays)
        assert delays[-1] == 10.0

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(
        self, fake_provider, recording_sleep
    ):
        """Should succeed on retry and reset the attempt counter."""
        a = fake_provider("alpha", outcomes=[NetworkError("network down")])
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert outcome.status == ProviderStatus.SUCCESS
        assert outcome.attempts == 2
        assert recording_sleep.delays == [1.0]
        assert coordinator.classifier.attempts("alpha") == 0

    @pytest.mark.asyncio
    async def test_non_retryable_failure_not_retried(
        self, fake_provider, recording_sleep
    ):
        """Should finalize parsing errors after one call."""
        a = fake_provider("alpha", error=ParsingError("bad json"))
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert len(a.calls) == 1
        assert outcome.error.kind == ErrorKind.PARSING
        assert outcome.error.retryable is False
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_retries_configured(self, fake_provider, recording_sleep):
        """Should make exactly one call when retries are disabled."""
        a = fake_provider("alpha", error=NetworkError("down"))
        coordinator = build_coordinator(
            [a], recording_sleep, retry=RetryConfig(max_retries=0)
        )

        result = await coordinator.aggregate("cats", "en")

        assert len(a.calls) == 1
        assert result.per_provider["alpha"].error.retryable is True

    @pytest.mark.asyncio
    async def test_error_status_result_is_general_failure(
        self, fake_provider, recording_sleep
    ):
        """Should treat a returned error-status result as a general failure."""
        failed = ProviderResult(provider_id="alpha", status=ProviderStatus.ERROR)
        a = fake_provider("alpha", outcomes=[failed])
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert outcome.error.kind == ErrorKind.GENERAL
        assert len(a.calls) == 1


class TestAggregateFailures:
    """Tests for partial failure, timeouts and unavailable providers."""

    @pytest.mark.asyncio
    async def test_partial_failure(self, fake_provider, recording_sleep):
        """Should keep the successful provider's data when another fails."""
        a = fake_provider("alpha")
        b = fake_provider("beta", error=ParsingError("garbage"))
        coordinator = build_coordinator([a, b], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        assert result.summary.succeeded == 1
        assert result.summary.failed == 1
        assert result.per_provider["alpha"].status == ProviderStatus.SUCCESS
        assert result.per_provider["beta"].status == ProviderStatus.ERROR
        assert list(result.errors()) == ["beta"]

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, fake_provider, recording_sleep):
        """Should return normally even when every provider fails."""
        a = fake_provider("alpha", error=ParsingError("garbage"))
        b = fake_provider("beta", error=ValueError("boom"))
        coordinator = build_coordinator([a, b], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        assert result.summary.succeeded == 0
        assert result.summary.failed == 2
        assert result.summary.total_items == 0

    @pytest.mark.asyncio
    async def test_timeout_is_classified_and_retried(
        self, fake_provider, recording_sleep
    ):
        """Should cancel slow calls, classify them as timeout and back off."""
        a = fake_provider("alpha", delay=1.0)
        coordinator = build_coordinator(
            [a],
            recording_sleep,
            retry=RetryConfig(max_retries=1),
            aggregator=AggregatorConfig(provider_timeout_seconds=0.05),
        )

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert outcome.status == ProviderStatus.ERROR
        assert outcome.error.kind == ErrorKind.TIMEOUT
        assert outcome.error.retryable is True
        assert recording_sleep.delays[0] == 1.0
        assert len(a.calls) == 2

    @pytest.mark.asyncio
    async def test_unavailable_provider_not_called(
        self, fake_provider, recording_sleep
    ):
        """Should fail unavailable providers without search or retry."""
        a = fake_provider("alpha", available=False)
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        outcome = result.per_provider["alpha"]
        assert a.calls == []
        assert outcome.error.kind == ErrorKind.UNAVAILABLE
        assert outcome.error.retryable is False
        assert outcome.attempts == 0
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_rate_limited_provider_not_called(
        self, fake_provider, recording_sleep
    ):
        """Should treat a refused rate-limit check as unavailable."""
        a = fake_provider("alpha", rate_limit_ok=False)
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        assert a.calls == []
        assert result.per_provider["alpha"].error.kind == ErrorKind.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_user_message_uses_display_name(
        self, fake_provider, recording_sleep
    ):
        """Should build user messages from the provider's display name."""
        a = fake_provider("alpha", available=False, name="Alpha Search")
        coordinator = build_coordinator([a], recording_sleep)

        result = await coordinator.aggregate("cats", "en")

        assert "Alpha Search" in result.per_provider["alpha"].error.user_message

    @pytest.mark.asyncio
    async def test_failures_recorded_in_error_log(
        self, fake_provider, recording_sleep
    ):
        """Should log every classified attempt failure."""
        a = fake_provider("alpha", error=NetworkError("down"))
        coordinator = build_coordinator([a], recording_sleep)

        await coordinator.aggregate("cats", "en")

        stats = coordinator.classifier.error_stats()
        assert stats.by_provider == {"alpha": 4}
        assert stats.by_kind == {"network": 4}


class TestSettledCallback:
    """Tests for progressive on_provider_settled notifications."""

    @pytest.mark.asyncio
    async def test_called_once_per_provider(self, fake_provider, recording_sleep):
        """Should notify exactly once per provider, success or failure."""
        calls = []
        providers = [
            fake_provider("alpha"),
            fake_provider("beta", error=NetworkError("down")),
            fake_provider("gamma", available=False),
        ]
        coordinator = build_coordinator(
            providers,
            recording_sleep,
            callback=lambda pid, outcome: calls.append((pid, outcome.status)),
        )

        await coordinator.aggregate("cats", "en")

        assert Counter(pid for pid, _ in calls) == {"alpha": 1, "beta": 1, "gamma": 1}
        assert dict(calls)["beta"] == ProviderStatus.ERROR

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self, fake_provider, recording_sleep):
        """Should await coroutine callbacks."""
        seen = []

        async def on_settled(pid, outcome):
            await asyncio.sleep(0)
            seen.append(pid)

        coordinator = build_coordinator(
            [fake_provider("alpha")], recording_sleep, callback=on_settled
        )

        await coordinator.aggregate("cats", "en")

        assert seen == ["alpha"]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_aggregation(
        self, fake_provider, recording_sleep
    ):
        """Should log callback errors and still return the result."""

        def explode(pid, outcome):
            raise RuntimeError("listener bug")

        coordinator = build_coordinator(
            [fake_provider("alpha")], recording_sleep, callback=explode
        )

        result = await coordinator.aggregate("cats", "en")

        assert result.summary.succeeded == 1

    @pytest.mark.asyncio
    async def test_cancelling_callback_still_notified_once(
        self, fake_provider, recording_sleep
    ):
        """Should not notify again when the callback cancels its own task."""
        notified = []

        def cancel(pid, outcome):
            notified.append(pid)
            raise asyncio.CancelledError()

        coordinator = build_coordinator(
            [fake_provider("alpha"), fake_provider("beta")],
            recording_sleep,
            callback=cancel,
        )

        result = await coordinator.aggregate("cats", "en")

        assert sorted(notified) == ["alpha", "beta"]
        assert list(result.per_provider) == ["alpha", "beta"]
        assert result.summary.attempted == 2

    @pytest.mark.asyncio
    async def test_fast_provider_settles_first(self, fake_provider, recording_sleep):
        """Should notify each provider as soon as it settles."""
        order = []
        slow = fake_provider("slow", delay=0.05)
        fast = fake_provider("fast")
        coordinator = build_coordinator(
            [slow, fast],
            recording_sleep,
            callback=lambda pid, outcome: order.append(pid),
        )

        result = await coordinator.aggregate("cats", "en")

        assert order == ["fast", "slow"]
        assert list(result.per_provider) == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_per_call_callback_overrides_default(
        self, fake_provider, recording_sleep
    ):
        """Should prefer the callback passed to aggregate()."""
        default_calls, call_calls = [], []
        coordinator = build_coordinator(
            [fake_provider("alpha")],
            recording_sleep,
            callback=lambda pid, o: default_calls.append(pid),
        )

        await coordinator.aggregate(
            "cats", "en", on_provider_settled=lambda pid, o: call_calls.append(pid)
        )

        assert default_calls == []
        assert call_calls == ["alpha"]


class TestHistoryAndTracking:
    """Tests for history, stats and active search tracking."""

    @pytest.mark.asyncio
    async def test_history_newest_first(self, fake_provider, recording_sleep):
        coordinator = build_coordinator([fake_provider("alpha")], recording_sleep)

        await coordinator.aggregate("cats", "en")
        await coordinator.aggregate("hunde", "de")

        history = coordinator.get_search_history()
        assert [h.query for h in history] == ["hunde", "cats"]

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, fake_provider, recording_sleep):
        coordinator = build_coordinator(
            [fake_provider("alpha")],
            recording_sleep,
            aggregator=AggregatorConfig(history_size=2),
        )

        for text in ("one", "two", "three"):
            await coordinator.aggregate(text, "en")

        assert [h.query for h in coordinator.get_search_history()] == ["three", "two"]

    @pytest.mark.asyncio
    async def test_search_stats(self, fake_provider, recording_sleep):
        coordinator = build_coordinator([fake_provider("alpha")], recording_sleep)

        await coordinator.aggregate("cats", "en")
        await coordinator.aggregate("dogs", "en")
        await coordinator.aggregate("hunde", "de")

        stats = coordinator.get_search_stats()
        assert stats.total_searches == 3
        assert stats.language_counts == {"en": 2, "de": 1}
        assert stats.recent_searches[0].query == "hunde"

    def test_search_stats_empty(self, fake_provider, recording_sleep):
        coordinator = build_coordinator([fake_provider("alpha")], recording_sleep)

        stats = coordinator.get_search_stats()

        assert stats.total_searches == 0
        assert stats.recent_searches == []

    @pytest.mark.asyncio
    async def test_active_search_tracked_while_in_flight(
        self, fake_provider, recording_sleep
    ):
        """Should list the search while providers are still settling."""
        active_counts = []
        coordinator = build_coordinator([fake_provider("alpha")], recording_sleep)
        coordinator.on_provider_settled = lambda pid, o: active_counts.append(
            len(coordinator.get_active_searches())
        )

        await coordinator.aggregate("cats", "en")

        assert active_counts == [1]
        assert coordinator.get_active_searches() == []

    @pytest.mark.asyncio
    async def test_correlation_id_reaches_providers(
        self, fake_provider, recording_sleep
    ):
        """Should run provider flows under the query's correlation id."""
        seen = []

        class TracingProvider(fake_provider):
            async def search(self, query, language):
                seen.append(get_correlation_id())
                return await super().search(query, language)

        coordinator = build_coordinator([TracingProvider("alpha")], recording_sleep)
        before = get_correlation_id()

        result = await coordinator.aggregate("cats", "en")

        assert seen == [result.query.correlation_id]
        assert get_correlation_id() == before


class TestSearchProvider:
    """Tests for single-provider resolution."""

    @pytest.mark.asyncio
    async def test_resolves_single_provider(self, fake_provider, recording_sleep):
        a = fake_provider("alpha")
        b = fake_provider("beta")
        coordinator = build_coordinator([a, b], recording_sleep)

        outcome = await coordinator.search_provider("beta", "cats", "en")

        assert outcome.status == ProviderStatus.SUCCESS
        assert a.calls == []
        assert len(b.calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_provider(self, fake_provider, recording_sleep):
        coordinator = build_coordinator([fake_provider("alpha")], recording_sleep)

        with pytest.raises(UnknownProviderError):
            await coordinator.search_provider("nope", "cats", "en")

    @pytest.mark.asyncio
    async def test_invalid_input(self, fake_provider, recording_sleep):
        coordinator = build_coordinator([fake_provider("alpha")], recording_sleep)

        with pytest.raises(InvalidInputError):
            await coordinator.search_provider("alpha", " ", "en")


class TestCoordinatorMisc:
    """Tests for construction, lifecycle and helpers."""

    def test_direct_search_urls(self, fake_provider, recording_sleep):
        coordinator = build_coordinator(
            [fake_provider("alpha"), fake_provider("beta")], recording_sleep
        )

        urls = coordinator.get_direct_search_urls("cats", "en")

        assert urls == {
            "alpha": "https://alpha.example/?q=cats&hl=en",
            "beta": "https://beta.example/?q=cats&hl=en",
        }

    @pytest.mark.asyncio
    async def test_health_check_delegates_to_registry(
        self, fake_provider, recording_sleep
    ):
        coordinator = build_coordinator(
            [fake_provider("alpha"), fake_provider("beta", available=False)],
            recording_sleep,
        )

        health = await coordinator.health_check()

        assert health["alpha"].status == "healthy"
        assert health["beta"].status == "unhealthy"

    def test_from_config(self):
        config = MetasearchConfig(
            providers=[
                ProviderSettings(type=ProviderType.DUCKDUCKGO),
                ProviderSettings(type=ProviderType.DUCKDUCKGO, id="ddg2", enabled=False),
            ],
            aggregator=AggregatorConfig(provider_timeout_seconds=3),
        )

        coordinator = AggregationCoordinator.from_config(config)

        assert coordinator.providers.ids == ["duckduckgo"]
        provider = coordinator.providers.get("duckduckgo")
        assert isinstance(provider, DuckDuckGoProvider)
        assert provider.request_timeout_seconds == 3
        assert coordinator.config.provider_timeout_seconds == 3
        assert coordinator.classifier.display_name("duckduckgo") == "DuckDuckGo"

    @pytest.mark.asyncio
    async def test_context_manager_runs_cache_sweep(
        self, fake_provider, recording_sleep
    ):
        """Should start the sweep on enter and clear state on exit."""
        coordinator = build_coordinator([fake_provider("alpha")], recording_sleep)

        async with coordinator:
            assert coordinator.cache.sweeping is True
            await coordinator.aggregate("cats", "en")
            assert len(coordinator.cache) == 1

        assert coordinator.cache.sweeping is False
        assert len(coordinator.cache) == 0
        assert coordinator.get_search_history() == []
