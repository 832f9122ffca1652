"""Explicit provider map owned by the coordinator."""

from typing import Dict, Iterator, List, Sequence, Tuple

import structlog
from pydantic import BaseModel

from metasearch.models.config import ProviderSettings, ProviderType
from metasearch.providers.base import SearchProvider
from metasearch.providers.duckduckgo import DuckDuckGoProvider
from metasearch.utils.exceptions import ConfigValidationError, UnknownProviderError
from metasearch.utils.rate_limiter import RateLimiter

logger = structlog.get_logger()


class ProviderHealth(BaseModel):
    """Readiness of one provider"""

    available: bool
    rate_limit_ok: bool
    status: str  # healthy, unhealthy, error
    error: str = ""


class ProviderRegistry:
    """Ordered map of provider id -> provider.

    Iteration order is registration order, which fixes the order of slots
    in every aggregated result.
    """

    def __init__(self) -> None:
        self._providers: Dict[str, SearchProvider] = {}

    def register(self, provider: SearchProvider) -> None:
        """Add a provider. Raises ValueError if the id is already taken."""
        provider_id = provider.provider_id
        if provider_id in self._providers:
            raise ValueError(f"Provider already registered: {provider_id}")

        self._providers[provider_id] = provider
        logger.info("provider_registered", provider=provider_id)

    def unregister(self, provider_id: str) -> SearchProvider:
        try:
            provider = self._providers.pop(provider_id)
        except KeyError:
            raise UnknownProviderError(f"Unknown provider: {provider_id}") from None

        logger.info("provider_unregistered", provider=provider_id)
        return provider

    def get(self, provider_id: str) -> SearchProvider:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise UnknownProviderError(f"Unknown provider: {provider_id}") from None

    @property
    def ids(self) -> List[str]:
        return list(self._providers)

    def items(self) -> List[Tuple[str, SearchProvider]]:
        return list(self._providers.items())

    def display_names(self) -> Dict[str, str]:
        return {pid: p.display_name for pid, p in self._providers.items()}

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._providers))

    def health_check(self) -> Dict[str, ProviderHealth]:
        """Probe availability and rate-limit readiness of every provider.

        Note that check_rate_limit() may consume a rate-limit token.
        """
        results: Dict[str, ProviderHealth] = {}

        for provider_id, provider in self._providers.items():
            try:
                available = provider.is_available()
                rate_limit_ok = provider.check_rate_limit()
                results[provider_id] = ProviderHealth(
                    available=available,
                    rate_limit_ok=rate_limit_ok,
                    status="healthy" if available and rate_limit_ok else "unhealthy",
                )
            except Exception as e:
                logger.warning("provider_health_error", provider=provider_id, error=str(e))
                results[provider_id] = ProviderHealth(
                    available=False,
                    rate_limit_ok=False,
                    status="error",
                    error=str(e),
                )

        return results


def create_provider(
    settings: ProviderSettings, request_timeout_seconds: float = 10.0
) -> SearchProvider:
    """Instantiate a provider from its configuration entry."""
    limiter = RateLimiter(requests_per_minute=settings.requests_per_minute)

    if settings.type == ProviderType.DUCKDUCKGO:
        return DuckDuckGoProvider(
            provider_id=settings.provider_id,
            rate_limiter=limiter,
            base_url=settings.base_url,
            request_timeout_seconds=request_timeout_seconds,
        )

    raise ConfigValidationError(f"Unsupported provider type: {settings.type}")


def build_registry(
    settings: Sequence[ProviderSettings], request_timeout_seconds: float = 10.0
) -> ProviderRegistry:
    """Register every enabled provider, in configuration order."""
    registry = ProviderRegistry()
    for entry in settings:
        if not entry.enabled:
            logger.info("provider_disabled", provider=entry.provider_id)
            continue
        registry.register(create_provider(entry, request_timeout_seconds))
    return registry
