from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from metasearch.models.cache import CacheConfig


class ProviderType(str, Enum):
    DUCKDUCKGO = "duckduckgo"


class AggregatorConfig(BaseModel):
    """Coordinator settings"""

    provider_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Deadline for a single provider search call",
    )
    history_size: int = Field(default=50, ge=0, le=1000)


class RetryConfig(BaseModel):
    """Configuration for retry logic with exponential backoff

    Controls retry behavior for retryable provider failures:
    - Number of retries after the first attempt
    - Delay calculation parameters
    - Optional jitter for request spreading
    """

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries allowed after the initial attempt",
    )
    base_delay_ms: int = Field(
        default=1000,
        ge=0,
        le=60_000,
        description="Base delay for exponential backoff",
    )
    max_delay_ms: int = Field(
        default=10_000,
        ge=0,
        le=300_000,
        description="Maximum delay cap",
    )
    jitter_factor: float = Field(
        default=0.0,
        ge=0.0,
        le=0.5,
        description="Jitter as fraction of delay (0.1 = ±10%)",
    )


class DiagnosticsConfig(BaseModel):
    """Error log and health heuristic settings"""

    error_log_size: int = Field(default=100, ge=1, le=10_000)
    health_window: int = Field(
        default=10, ge=1, le=100, description="Recent records inspected for health"
    )
    unhealthy_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Recent errors (overall or per provider) that flag unhealthy",
    )


class ProviderSettings(BaseModel):
    """One provider entry in the configuration file"""

    type: ProviderType
    id: Optional[str] = Field(None, description="Defaults to the provider type")
    enabled: bool = True
    requests_per_minute: int = Field(default=60, ge=1, le=6000)
    base_url: Optional[str] = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Provider id cannot be blank")
        return v

    @property
    def provider_id(self) -> str:
        return self.id or self.type.value


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    json_output: bool = True


class MetasearchConfig(BaseModel):
    """Root configuration model"""

    model_config = ConfigDict(extra="forbid")

    default_language: str = Field(default="en", min_length=1, max_length=16)
    providers: List[ProviderSettings] = Field(
        default_factory=lambda: [ProviderSettings(type=ProviderType.DUCKDUCKGO)]
    )
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("providers")
    @classmethod
    def unique_provider_ids(cls, v: List[ProviderSettings]) -> List[ProviderSettings]:
        ids = [p.provider_id for p in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Provider ids must be unique")
        return v
