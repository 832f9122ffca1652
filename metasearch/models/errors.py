"""Failure classification models.

ErrorKind is the taxonomy produced by the FailureClassifier. ErrorRecord is
the classified form of one provider failure; the classifier keeps a bounded
log of them for diagnostics.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorKind(str, Enum):
    """Failure taxonomy, listed in classification priority order."""

    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    NETWORK = "network"
    API = "api"
    PARSING = "parsing"
    GENERAL = "general"
    INVALID_INPUT = "invalid_input"


class ApiErrorBand(str, Enum):
    """Status code band for API errors"""

    CLIENT = "client"  # 4xx other than 429
    RATE_LIMIT = "rate_limit"  # 429
    SERVER = "server"  # 5xx
    UNKNOWN = "unknown"


class ErrorRecord(BaseModel):
    """Classified provider failure"""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    kind: ErrorKind
    raw_message: str = ""
    classified_at: datetime = Field(default_factory=datetime.now)
    user_message: str
    retryable: bool
    status_code: Optional[int] = None
    api_band: Optional[ApiErrorBand] = None


class ErrorStats(BaseModel):
    """Aggregate counts over the error log"""

    total: int = 0
    by_kind: Dict[str, int] = Field(default_factory=dict)
    by_provider: Dict[str, int] = Field(default_factory=dict)
    recent: List[ErrorRecord] = Field(default_factory=list)


class HealthReport(BaseModel):
    """Health heuristic derived from the error log"""

    healthy: bool
    recent_error_count: int = 0
    total_error_count: int = 0
    most_problematic_provider: Optional[str] = None
    unhealthy_providers: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
