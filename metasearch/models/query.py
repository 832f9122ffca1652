"""Query and provider result models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProviderStatus(str, Enum):
    """Terminal status of one provider within an aggregation."""

    SUCCESS = "success"
    ERROR = "error"


class Query(BaseModel):
    """A single user query. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1)
    language: str
    issued_at: datetime = Field(default_factory=datetime.now)
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Query text cannot be empty")
        return v

    @property
    def normalized_text(self) -> str:
        """Lower-cased, whitespace-trimmed text used for cache keys."""
        return self.text.strip().lower()


class SearchItem(BaseModel):
    """One result row returned by a provider"""

    title: str
    url: str
    snippet: str = ""
    display_url: str = ""
    provider_fields: Dict[str, Any] = Field(default_factory=dict)


class ProviderResult(BaseModel):
    """Response of one provider for one query."""

    provider_id: str = Field(..., min_length=1)
    items: List[SearchItem] = Field(default_factory=list)
    item_count: int = Field(default=-1, description="Defaults to len(items)")
    latency_ms: int = Field(default=0, ge=0)
    status: ProviderStatus = ProviderStatus.SUCCESS

    @model_validator(mode="after")
    def default_item_count(self) -> "ProviderResult":
        if self.item_count < 0:
            self.item_count = len(self.items)
        return self
