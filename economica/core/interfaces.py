"""Protocol definitions for service interfaces.

The container hands these out so routes and tests depend on behaviour,
not on concrete classes.
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from economica.models.knowledge import (
    KnowledgeEntry,
    KnowledgeEntryCreate,
    KnowledgeEntryUpdate,
    KnowledgeStats,
    QualityAssessment,
    SearchQuery,
    SearchResponse,
    ValidationReport,
)
from economica.models.query import Query, QueryType


@runtime_checkable
class IResponseCache(Protocol):
    """Interface for the response cache."""

    async def get(self, key: str, query_type: QueryType = QueryType.GENERAL) -> Optional[Any]:
        ...

    async def set(self, key: str, data: Any, query_type: QueryType = QueryType.GENERAL, ttl: Optional[int] = None) -> bool:
        ...

    async def remove(self, key: str) -> bool:
        ...

    async def clear(self) -> None:
        ...

    async def warm(self, items: Iterable[Tuple[str, Any, QueryType]]) -> int:
        ...

    def get_stats(self) -> Dict[str, Any]:
        ...

    def health(self) -> Any:
        ...


@runtime_checkable
class IKnowledgeBase(Protocol):
    """Interface for knowledge base search and authoring."""

    async def search(self, query: SearchQuery) -> SearchResponse:
        ...

    async def get_entry(self, entry_id: str) -> Optional[KnowledgeEntry]:
        ...

    def list_entries(self) -> List[KnowledgeEntry]:
        ...

    async def add_entry(self, data: KnowledgeEntryCreate) -> KnowledgeEntry:
        ...

    async def update_entry(self, entry_id: str, patch: KnowledgeEntryUpdate) -> KnowledgeEntry:
        ...

    async def delete_entry(self, entry_id: str) -> bool:
        ...

    async def rate_entry(self, entry_id: str, rating: float) -> KnowledgeEntry:
        ...

    def validate_entry(self, entry: KnowledgeEntryCreate) -> ValidationReport:
        ...

    async def assess_quality(self, entry_id: str) -> QualityAssessment:
        ...

    def get_stats(self) -> KnowledgeStats:
        ...


@runtime_checkable
class IQueryOrchestrator(Protocol):
    """Interface for query resolution."""

    async def resolve(self, query: Query) -> Any:
        ...

    async def resolve_combined(self, query: Query) -> Any:
        ...

    def get_economics_metrics(self) -> Dict[str, Any]:
        ...

    def system_health(self) -> Dict[str, Any]:
        ...
