"""Exception hierarchy for the metasearch engine.

Two families of errors exist:
- Caller errors (InvalidInputError, UnknownProviderError) propagate out of
  the coordinator as raised exceptions.
- Provider-scoped errors (everything under ProviderError) are raised by
  provider implementations and are always recovered by the coordinator:
  classified, retried when eligible, and embedded in the provider's slot
  of the aggregated result.

All exceptions inherit from MetasearchError to allow catching everything
the engine raises in a single except block when needed.
"""

from typing import Optional


class MetasearchError(Exception):
    """Base exception for all metasearch errors

    Use this to catch any error raised by the engine:
    ```python
    try:
        result = await coordinator.aggregate(text, "en")
    except MetasearchError as e:
        logger.error("aggregation_failed", error=str(e))
    ```
    """

    pass


class InvalidInputError(MetasearchError):
    """Caller supplied an unusable query

    Raised when:
    - Query text is empty or whitespace-only
    - Language code is empty

    Fails the whole call before any cache lookup or provider invocation.
    """

    pass


class UnknownProviderError(MetasearchError):
    """Requested provider id is not registered"""

    pass


class ConfigValidationError(MetasearchError):
    """Configuration validation failed"""

    pass


class ProviderError(MetasearchError):
    """Base for errors raised by a search provider.

    Carries the provider id when the raising code knows it.
    """

    def __init__(self, message: str, provider_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider_id = provider_id


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded its deadline and was cancelled."""

    pass


class ProviderUnavailableError(ProviderError):
    """Provider refused the request before any network call.

    Raised when:
    - is_available() reports False
    - check_rate_limit() reports False
    - A platform-level security block prevents access
    """

    pass


class NetworkError(ProviderError):
    """Connection or transport failure."""

    pass


class APIError(ProviderError):
    """Remote endpoint answered with an error status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, provider_id=provider_id)
        self.status_code = status_code


class RateLimitError(APIError):
    """Rate limit exceeded with optional retry-after metadata.

    Raised when:
    - API returns 429 status
    - Rate limit headers indicate throttling
    """

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        provider_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, status_code=429, provider_id=provider_id)
        self.retry_after = retry_after


class ParsingError(ProviderError):
    """Response was received but could not be parsed."""

    pass
