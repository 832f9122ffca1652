"""Shared fixtures: scripted fake providers and a recording sleep."""

import asyncio
from typing import List, Optional

import pytest

from metasearch.models.query import ProviderResult, Query, SearchItem
from metasearch.providers.base import SearchProvider


class FakeProvider(SearchProvider):
    """Provider whose behavior is scripted per call.

    `outcomes` is consumed one entry per search call: an exception is
    raised, a ProviderResult is returned. Once exhausted, `error` is raised
    if set, otherwise a one-item success is returned.
    """

    def __init__(
        self,
        provider_id: str,
        outcomes: Optional[list] = None,
        error: Optional[BaseException] = None,
        available: bool = True,
        rate_limit_ok: bool = True,
        delay: float = 0.0,
        name: Optional[str] = None,
    ):
        self._provider_id = provider_id
        self.outcomes = list(outcomes or [])
        self.error = error
        self.available = available
        self.rate_limit_ok = rate_limit_ok
        self.delay = delay
        self.name = name
        self.calls: List[Query] = []

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def display_name(self) -> str:
        return self.name or self._provider_id

    def is_available(self) -> bool:
        return self.available

    def check_rate_limit(self) -> bool:
        return self.rate_limit_ok

    def get_direct_search_url(self, query: Query, language: str) -> str:
        return f"https://{self._provider_id}.example/?q={query.text}&hl={language}"

    async def search(self, query: Query, language: str) -> ProviderResult:
        self.calls.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

        if self.error is not None:
            raise self.error

        return make_result(self._provider_id)


def make_result(provider_id: str, count: int = 1) -> ProviderResult:
    return ProviderResult(
        provider_id=provider_id,
        items=[
            SearchItem(
                title=f"{provider_id} result {i}",
                url=f"https://{provider_id}.example/{i}",
            )
            for i in range(count)
        ],
        latency_ms=5,
    )


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_provider():
    """Factory for scripted providers."""
    return FakeProvider


@pytest.fixture
def result_factory():
    return make_result


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
