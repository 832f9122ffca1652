from abc import ABC, abstractmethod

from metasearch.models.query import ProviderResult, Query


class SearchProvider(ABC):
    """Abstract base class for search providers

    All providers must implement this interface so the coordinator can treat
    every search source the same way. Implementations raise exceptions from
    metasearch.utils.exceptions (or library errors the classifier knows)
    on failure and never return partial garbage.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Stable identifier used for cache keys, logs and result slots"""
        pass

    @property
    def display_name(self) -> str:
        """Human-readable name used in user-facing messages"""
        return self.provider_id

    @abstractmethod
    async def search(self, query: Query, language: str) -> ProviderResult:
        """Search the provider

        Args:
            query: The user query
            language: Language code for the search

        Returns:
            ProviderResult with status success

        Raises:
            ProviderError: If the search fails
        """
        pass

    def is_available(self) -> bool:
        """Whether the provider can be used at all right now"""
        return True

    def check_rate_limit(self) -> bool:
        """Whether a request may be sent now. False blocks the call."""
        return True

    @abstractmethod
    def get_direct_search_url(self, query: Query, language: str) -> str:
        """URL that opens the same search on the provider's own site"""
        pass
