"""Query and response models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueryType(str, Enum):
    """Kind of question being asked; drives caching and provider preference."""
    PROTOCOL = "protocol"
    DIAGNOSIS = "diagnosis"
    EXERCISE = "exercise"
    RESEARCH = "research"
    GENERAL = "general"
    EMERGENCY = "emergency"


class Priority(str, Enum):
    """Caller-assigned urgency."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class ResponseSource(str, Enum):
    """Where a response came from."""
    KNOWLEDGE = "knowledge"
    CACHE = "cache"
    PREMIUM = "premium"
    COMBINED = "combined"
    FALLBACK = "fallback"


class ConfidenceLevel(str, Enum):
    """Ordinal confidence bucket derived from a 0-100 score."""
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceLevel":
        """Bucket a numeric score. Monotonic in ``score``."""
        if score >= 90:
            return cls.VERY_HIGH
        if score >= 80:
            return cls.HIGH
        if score >= 60:
            return cls.MEDIUM
        if score >= 40:
            return cls.LOW
        return cls.VERY_LOW

    def representative_score(self) -> float:
        """A score that falls inside this bucket, used when averaging levels."""
        return _REPRESENTATIVE_SCORES[self]

    @property
    def rank(self) -> int:
        return _RANKS[self]


_REPRESENTATIVE_SCORES = {
    ConfidenceLevel.VERY_HIGH: 95.0,
    ConfidenceLevel.HIGH: 85.0,
    ConfidenceLevel.MEDIUM: 70.0,
    ConfidenceLevel.LOW: 50.0,
    ConfidenceLevel.VERY_LOW: 20.0,
}

_RANKS = {level: index for index, level in enumerate(ConfidenceLevel)}


class QueryContext(BaseModel):
    """Optional context narrowing a query."""
    tags: List[str] = Field(default_factory=list, description="Topic tags")
    specialty: Optional[str] = Field(None, description="Clinical specialty")
    patient_id: Optional[str] = Field(None, description="Patient the question is about")
    hints: Dict[str, Any] = Field(default_factory=dict, description="Free-form caller hints")

    model_config = ConfigDict(frozen=True)


class Query(BaseModel):
    """A question to resolve. Immutable once created."""
    id: str = Field(default_factory=_new_id, description="Query ID")
    text: str = Field(..., min_length=1, description="Raw query text")
    type: QueryType = Field(QueryType.GENERAL, description="Query type")
    context: Optional[QueryContext] = Field(None, description="Optional narrowing context")
    priority: Priority = Field(Priority.MEDIUM, description="Caller priority")
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query text must not be blank")
        return value


class Citation(BaseModel):
    """Reference backing a response."""
    id: str
    title: str
    source: str
    relevance: float = 0.0
    type: Literal["internal", "scientific", "guideline", "expert"] = "internal"

    model_config = ConfigDict(frozen=True)


class _ResponseBase(BaseModel):
    id: str = Field(default_factory=_new_id)
    query_id: str
    content: str
    confidence: ConfidenceLevel
    citations: List[Citation] = Field(default_factory=list)
    processing_time: float = Field(0.0, description="Seconds spent resolving")
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class KnowledgeResponse(_ResponseBase):
    """Answer served from the curated knowledge base."""
    source: Literal[ResponseSource.KNOWLEDGE] = ResponseSource.KNOWLEDGE
    cost: Literal[0] = 0
    cached: Literal[False] = False
    entry_id: Optional[str] = None
    degraded: bool = Field(False, description="Served below the normal confidence threshold")


class CacheResponse(_ResponseBase):
    """A previously computed premium answer served from cache."""
    source: Literal[ResponseSource.CACHE] = ResponseSource.CACHE
    cost: Literal[0] = 0
    cached: Literal[True] = True
    provider: Optional[str] = Field(None, description="Provider that originally produced the answer")


class PremiumResponse(_ResponseBase):
    """Answer from a metered premium provider."""
    source: Literal[ResponseSource.PREMIUM] = ResponseSource.PREMIUM
    cost: float = Field(..., ge=0.0)
    cached: Literal[False] = False
    provider: str
    tokens_used: int = 0


class CombinedResponse(_ResponseBase):
    """Knowledge base and premium answers merged."""
    source: Literal[ResponseSource.COMBINED] = ResponseSource.COMBINED
    cost: float = Field(0.0, ge=0.0)
    cached: Literal[False] = False
    sources: List[ResponseSource] = Field(default_factory=list)
    provider: Optional[str] = None


class FallbackResponse(_ResponseBase):
    """Fixed answer when nothing else could be produced."""
    source: Literal[ResponseSource.FALLBACK] = ResponseSource.FALLBACK
    cost: Literal[0] = 0
    cached: Literal[False] = False
    confidence: Literal[ConfidenceLevel.VERY_LOW] = ConfidenceLevel.VERY_LOW
    reason: Optional[str] = None


Response = Annotated[
    Union[KnowledgeResponse, CacheResponse, PremiumResponse, CombinedResponse, FallbackResponse],
    Field(discriminator="source"),
]

response_adapter: TypeAdapter = TypeAdapter(Response)


def parse_response(data: Dict[str, Any]):
    """Validate a serialized response back into its variant."""
    return response_adapter.validate_python(data)
