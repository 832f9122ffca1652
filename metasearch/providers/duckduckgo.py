import json
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse

import aiohttp
import structlog

from metasearch.models.query import ProviderResult, Query, SearchItem
from metasearch.providers.base import SearchProvider
from metasearch.utils.exceptions import (
    APIError,
    NetworkError,
    ParsingError,
    RateLimitError,
)
from metasearch.utils.rate_limiter import RateLimiter

logger = structlog.get_logger()

# DuckDuckGo region codes for the languages we pass through; others fall back
# to the worldwide region.
_REGIONS = {
    "en": "us-en",
    "ja": "jp-jp",
    "zh": "cn-zh",
    "ko": "kr-kr",
    "de": "de-de",
    "fr": "fr-fr",
    "es": "es-es",
}


def _retry_after(headers: Any) -> Optional[float]:
    value = headers.get("Retry-After") if headers else None
    try:
        return float(value) if value else None
    except (TypeError, ValueError):
        return None


class DuckDuckGoProvider(SearchProvider):
    """Search using the DuckDuckGo Instant Answer API"""

    API_URL = "https://api.duckduckgo.com/"
    SITE_URL = "https://duckduckgo.com/"
    MAX_TOPICS = 5

    def __init__(
        self,
        provider_id: str = "duckduckgo",
        rate_limiter: Optional[RateLimiter] = None,
        base_url: Optional[str] = None,
        request_timeout_seconds: float = 10.0,
    ):
        self._provider_id = provider_id
        # One request per second unless configured otherwise
        self.rate_limiter = rate_limiter or RateLimiter(
            requests_per_minute=60, burst_size=1
        )
        self.api_url = base_url or self.API_URL
        self.request_timeout_seconds = request_timeout_seconds

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def display_name(self) -> str:
        return "DuckDuckGo"

    def check_rate_limit(self) -> bool:
        return self.rate_limiter.try_acquire(requester_id=self._provider_id)

    def get_direct_search_url(self, query: Query, language: str) -> str:
        params = {"q": query.text.strip(), "kl": self._region(language)}
        return f"{self.SITE_URL}?{urlencode(params)}"

    async def search(self, query: Query, language: str) -> ProviderResult:
        """Search for instant answers matching the query"""
        started = time.monotonic()
        params = {
            "q": query.text.strip(),
            "format": "json",
            "no_html": "1",
            "skip_disambig": "1",
            "kl": self._region(language),
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.api_url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout_seconds),
                ) as response:

                    if response.status == 429:
                        raise RateLimitError(
                            "DuckDuckGo rate limit exceeded",
                            retry_after=_retry_after(response.headers),
                            provider_id=self._provider_id,
                        )

                    if response.status != 200:
                        raise APIError(
                            f"DuckDuckGo API returned status {response.status}",
                            status_code=response.status,
                            provider_id=self._provider_id,
                        )

                    # The API answers with a javascript content type
                    data = await response.json(content_type=None)

        except aiohttp.ClientConnectionError as e:
            raise NetworkError(
                f"DuckDuckGo request failed: {e}", provider_id=self._provider_id
            ) from e
        except json.JSONDecodeError as e:
            raise ParsingError(
                f"DuckDuckGo returned invalid JSON: {e}", provider_id=self._provider_id
            ) from e

        if not isinstance(data, dict):
            raise ParsingError(
                "DuckDuckGo response is not a JSON object",
                provider_id=self._provider_id,
            )

        items = self._parse_response(data, query)
        latency_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "provider_results",
            provider=self._provider_id,
            query=query.text[:50],
            count=len(items),
            latency_ms=latency_ms,
        )

        return ProviderResult(
            provider_id=self._provider_id,
            items=items,
            latency_ms=latency_ms,
        )

    def _parse_response(self, data: Dict[str, Any], query: Query) -> List[SearchItem]:
        items: List[SearchItem] = []

        if data.get("Abstract"):
            items.append(
                SearchItem(
                    title=data.get("Heading") or f"{query.text} - Summary",
                    url=data.get("AbstractURL") or self.SITE_URL,
                    snippet=data["Abstract"],
                    display_url=data.get("AbstractSource") or "DuckDuckGo",
                    provider_fields={"type": "abstract"},
                )
            )

        if data.get("Definition"):
            items.append(
                SearchItem(
                    title=f"{query.text} - Definition",
                    url=data.get("DefinitionURL") or self.SITE_URL,
                    snippet=data["Definition"],
                    display_url=data.get("DefinitionSource") or "DuckDuckGo",
                    provider_fields={"type": "definition"},
                )
            )

        for kind in ("RelatedTopics", "Results"):
            topics = data.get(kind)
            if not isinstance(topics, list):
                continue
            for topic in topics[: self.MAX_TOPICS]:
                item = self._topic_item(topic, kind)
                if item is not None:
                    items.append(item)

        return items

    def _topic_item(self, topic: Any, kind: str) -> Optional[SearchItem]:
        if not isinstance(topic, dict):
            return None
        text, url = topic.get("Text"), topic.get("FirstURL")
        if not text or not url:
            # Grouped topics ({"Name": ..., "Topics": [...]}) are skipped
            return None

        return SearchItem(
            title=text.split(" - ")[0] or text,
            url=url,
            snippet=text,
            display_url=self._display_url(url),
            provider_fields={"type": kind},
        )

    @staticmethod
    def _display_url(url: str) -> str:
        parsed = urlparse(url)
        if not parsed.netloc:
            return url
        return parsed.netloc + parsed.path

    @staticmethod
    def _region(language: str) -> str:
        return _REGIONS.get(language.lower(), "wt-wt")
