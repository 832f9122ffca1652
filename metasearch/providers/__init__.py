"""Search provider implementations and the provider registry."""

from metasearch.providers.base import SearchProvider
from metasearch.providers.duckduckgo import DuckDuckGoProvider
from metasearch.providers.registry import (
    ProviderHealth,
    ProviderRegistry,
    build_registry,
    create_provider,
)

__all__ = [
    "SearchProvider",
    "DuckDuckGoProvider",
    "ProviderHealth",
    "ProviderRegistry",
    "build_registry",
    "create_provider",
]
