"""Domain models."""

from economica.models.query import (
    CacheResponse,
    Citation,
    CombinedResponse,
    ConfidenceLevel,
    FallbackResponse,
    KnowledgeResponse,
    PremiumResponse,
    Priority,
    Query,
    QueryContext,
    QueryType,
    Response,
    ResponseSource,
    parse_response,
)

__all__ = [
    "CacheResponse",
    "Citation",
    "CombinedResponse",
    "ConfidenceLevel",
    "FallbackResponse",
    "KnowledgeResponse",
    "PremiumResponse",
    "Priority",
    "Query",
    "QueryContext",
    "QueryType",
    "Response",
    "ResponseSource",
    "parse_response",
]
