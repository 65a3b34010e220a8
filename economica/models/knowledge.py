"""Knowledge base entry and search models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from economica.models.query import QueryType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EvidenceLevel(str, Enum):
    """Strength of the evidence behind an entry."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    EXPERT_OPINION = "expert_opinion"


class KnowledgeEntry(BaseModel):
    """A curated answer owned by the knowledge base."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str
    content: str
    tags: List[str] = Field(default_factory=list)
    type: QueryType = QueryType.GENERAL
    confidence_score: float = Field(0.0, ge=0.0, le=100.0)
    evidence: EvidenceLevel = EvidenceLevel.MODERATE
    usage_count: int = 0
    avg_rating: float = Field(0.0, ge=0.0, le=5.0)
    rating_count: int = 0
    specialty: Optional[str] = None
    author: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class KnowledgeEntryCreate(BaseModel):
    """Authored content for a new entry."""
    title: str
    content: str
    tags: List[str] = Field(default_factory=list)
    type: QueryType = QueryType.GENERAL
    confidence_score: float = Field(0.0, ge=0.0, le=100.0)
    evidence: EvidenceLevel = EvidenceLevel.MODERATE
    specialty: Optional[str] = None
    author: Optional[str] = None
    sources: List[str] = Field(default_factory=list)


class KnowledgeEntryUpdate(BaseModel):
    """Partial update; unset fields are left alone."""
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    type: Optional[QueryType] = None
    confidence_score: Optional[float] = Field(None, ge=0.0, le=100.0)
    evidence: Optional[EvidenceLevel] = None
    specialty: Optional[str] = None
    author: Optional[str] = None
    sources: Optional[List[str]] = None


class DateRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class SearchFilters(BaseModel):
    """Conjunctive filters applied after scoring."""
    tags: Optional[List[str]] = Field(None, description="Keep entries with any matching tag")
    specialty: Optional[str] = Field(None, description="Case-insensitive substring")
    min_confidence: Optional[float] = Field(None, ge=0.0, le=100.0)
    evidence_levels: Optional[List[EvidenceLevel]] = None
    date_range: Optional[DateRange] = Field(None, description="Bounds on updated_at")
    author: Optional[str] = Field(None, description="Case-insensitive substring")


class SearchSorting(BaseModel):
    field: Literal["relevance", "confidence", "date", "usage"] = "relevance"
    order: Literal["asc", "desc"] = "desc"


class Pagination(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)


class SearchQuery(BaseModel):
    """Knowledge base search request."""
    text: str
    type: Optional[QueryType] = None
    filters: SearchFilters = Field(default_factory=SearchFilters)
    sorting: SearchSorting = Field(default_factory=SearchSorting)
    pagination: Pagination = Field(default_factory=Pagination)


class SearchResult(BaseModel):
    entry: KnowledgeEntry
    relevance_score: float
    highlights: List[str] = Field(default_factory=list)
    matched_tags: List[str] = Field(default_factory=list)
    reasoning: str = ""


class SearchResponse(BaseModel):
    results: List[SearchResult]
    total: int = Field(..., description="Matches after filtering, before pagination")
    processing_time: float = Field(..., description="Milliseconds")
    query: SearchQuery
    suggestions: List[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    """Outcome of authoring validation."""
    is_valid: bool
    score: float
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class QualityAssessment(BaseModel):
    """Editorial quality of a single entry, each dimension 0-100."""
    entry_id: str
    accuracy: float
    completeness: float
    relevance: float
    clarity: float
    overall: float
    recommendations: List[str] = Field(default_factory=list)


class KnowledgeStats(BaseModel):
    total_entries: int
    entries_by_type: Dict[str, int]
    entries_by_specialty: Dict[str, int]
    average_confidence: float
    average_rating: float
    total_usage: int
    top_entries: List[Dict[str, Any]] = Field(default_factory=list)
