"""Aggregation result models.

AggregatedResult is created once per aggregate() call and is immutable after
it is returned. The summary invariants are enforced at construction time so
an inconsistent result can never leave the coordinator.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from metasearch.models.errors import ErrorRecord
from metasearch.models.query import ProviderResult, ProviderStatus, Query


class RetryState(BaseModel):
    """Attempt counter for one provider within one aggregation call."""

    provider_id: str
    attempts: int = Field(default=0, ge=0)


class ProviderOutcome(BaseModel):
    """Terminal outcome of one provider"""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    status: ProviderStatus
    data: Optional[ProviderResult] = None
    error: Optional[ErrorRecord] = None
    from_cache: bool = False
    attempts: int = Field(default=1, ge=0, description="Provider invocations made")

    @model_validator(mode="after")
    def payload_matches_status(self) -> "ProviderOutcome":
        if self.status == ProviderStatus.SUCCESS and self.data is None:
            raise ValueError("successful outcome requires data")
        if self.status == ProviderStatus.ERROR and self.error is None:
            raise ValueError("failed outcome requires an error record")
        return self

    @property
    def item_count(self) -> int:
        return self.data.item_count if self.data else 0


class AggregationSummary(BaseModel):
    """Counts over all provider slots"""

    model_config = ConfigDict(frozen=True)

    attempted: int = Field(..., ge=0)
    succeeded: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    total_items: int = Field(default=0, ge=0)


class AggregatedResult(BaseModel):
    """Consolidated result of one aggregate() call."""

    model_config = ConfigDict(frozen=True)

    query: Query
    language: str
    total_latency_ms: int = Field(..., ge=0)
    per_provider: Dict[str, ProviderOutcome]
    summary: AggregationSummary
    completed_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def summary_is_consistent(self) -> "AggregatedResult":
        s = self.summary
        if s.succeeded + s.failed != s.attempted:
            raise ValueError("succeeded + failed must equal attempted")
        if s.attempted != len(self.per_provider):
            raise ValueError("attempted must equal the number of provider slots")
        return self

    @classmethod
    def build(
        cls,
        query: Query,
        outcomes: List[ProviderOutcome],
        total_latency_ms: int,
    ) -> "AggregatedResult":
        """Assemble a result and its summary from ordered outcomes."""
        per_provider = {o.provider_id: o for o in outcomes}
        succeeded = sum(1 for o in outcomes if o.status == ProviderStatus.SUCCESS)
        summary = AggregationSummary(
            attempted=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            total_items=sum(o.item_count for o in outcomes),
        )
        return cls(
            query=query,
            language=query.language,
            total_latency_ms=total_latency_ms,
            per_provider=per_provider,
            summary=summary,
        )

    def errors(self) -> Dict[str, ErrorRecord]:
        """Error records keyed by provider id, for failed slots only."""
        return {
            pid: o.error for pid, o in self.per_provider.items() if o.error is not None
        }


class HistoryEntry(BaseModel):
    """One completed aggregation kept in the search history"""

    query: str
    language: str
    timestamp: datetime = Field(default_factory=datetime.now)
    total_latency_ms: int = 0
    succeeded: int = 0
    total_items: int = 0


class ActiveSearch(BaseModel):
    """An aggregation currently in flight"""

    correlation_id: str
    query: str
    language: str
    started_at: datetime = Field(default_factory=datetime.now)


class SearchStats(BaseModel):
    """Statistics over the search history"""

    total_searches: int = 0
    average_latency_ms: int = 0
    language_counts: Dict[str, int] = Field(default_factory=dict)
    recent_searches: List[HistoryEntry] = Field(default_factory=list)
