"""
Data models for the result cache.

Defines cache configuration, entries, statistics and snapshots.
"""

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field, model_validator

from metasearch.models.query import ProviderResult


class CacheConfig(BaseModel):
    """Cache configuration"""

    model_config = ConfigDict(protected_namespaces=())

    enabled: bool = True

    # Capacity (entries, not bytes)
    max_entries: int = Field(default=100, ge=1, le=100_000)

    # TTL settings (seconds)
    default_ttl_seconds: float = Field(default=300.0, gt=0.0)

    # Expired-entry sweep
    sweep_interval_seconds: float = Field(default=60.0, gt=0.0)


class CacheEntry(BaseModel):
    """One cached provider result. Timestamps are epoch seconds."""

    key: str
    payload: ProviderResult
    created_at: float
    last_accessed_at: float
    expires_at: float
    approximate_size_bytes: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def timestamps_are_ordered(self) -> "CacheEntry":
        if self.last_accessed_at < self.created_at:
            raise ValueError("last_accessed_at must not precede created_at")
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        return self

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStats(BaseModel):
    """Cache statistics"""

    model_config = ConfigDict(protected_namespaces=())

    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0
    total_size_bytes: int = 0
    max_entries: int = 0

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    last_updated: datetime = Field(default_factory=datetime.now)

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate"""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    @property
    def capacity_usage_percent(self) -> float:
        if self.max_entries == 0:
            return 0.0
        return (self.total_entries / self.max_entries) * 100


class CacheSnapshotEntry(BaseModel):
    """Exported form of a cache entry"""

    key: str
    payload: ProviderResult
    created_at: float
    expires_at: float


class CacheSnapshot(BaseModel):
    """Point-in-time export of the valid cache entries"""

    timestamp: float
    entries: List[CacheSnapshotEntry] = Field(default_factory=list)
