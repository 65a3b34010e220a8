"""Knowledge base search and authoring endpoints."""

from typing import List

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from economica.api.deps import get_knowledge_base
from economica.core.errors import EntryNotFoundError
from economica.core.interfaces import IKnowledgeBase
from economica.core.logging import get_logger
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

logger = get_logger(__name__)

router = APIRouter(prefix="/knowledge")


class RatingRequest(BaseModel):
    rating: float = Field(..., ge=1.0, le=5.0, description="User rating from 1 to 5")


@router.post("/search", response_model=SearchResponse)
async def search_knowledge(
    search: SearchQuery,
    knowledge_base: IKnowledgeBase = Depends(get_knowledge_base),
) -> SearchResponse:
    """Ranked search with filters, sorting and pagination."""
    return await knowledge_base.search(search)


@router.get("", response_model=List[KnowledgeEntry])
async def list_entries(knowledge_base: IKnowledgeBase = Depends(get_knowledge_base)) -> List[KnowledgeEntry]:
    return knowledge_base.list_entries()


@router.get("/stats", response_model=KnowledgeStats)
async def knowledge_stats(knowledge_base: IKnowledgeBase = Depends(get_knowledge_base)) -> KnowledgeStats:
    return knowledge_base.get_stats()


@router.post("/validate", response_model=ValidationReport)
async def validate_entry(
    entry: KnowledgeEntryCreate,
    knowledge_base: IKnowledgeBase = Depends(get_knowledge_base),
) -> ValidationReport:
    """Dry-run authoring validation."""
    return knowledge_base.validate_entry(entry)


@router.get("/{entry_id}", response_model=KnowledgeEntry)
async def get_entry(entry_id: str, knowledge_base: IKnowledgeBase = Depends(get_knowledge_base)) -> KnowledgeEntry:
    entry = await knowledge_base.get_entry(entry_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    return entry


@router.post("", response_model=KnowledgeEntry, status_code=status.HTTP_201_CREATED)
async def create_entry(
    entry: KnowledgeEntryCreate,
    knowledge_base: IKnowledgeBase = Depends(get_knowledge_base),
) -> KnowledgeEntry:
    return await knowledge_base.add_entry(entry)


@router.patch("/{entry_id}", response_model=KnowledgeEntry)
async def update_entry(
    entry_id: str,
    patch: KnowledgeEntryUpdate,
    knowledge_base: IKnowledgeBase = Depends(get_knowledge_base),
) -> KnowledgeEntry:
    return await knowledge_base.update_entry(entry_id, patch)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(entry_id: str, knowledge_base: IKnowledgeBase = Depends(get_knowledge_base)) -> Response:
    if not await knowledge_base.delete_entry(entry_id):
        raise EntryNotFoundError(entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{entry_id}/rating", response_model=KnowledgeEntry)
async def rate_entry(
    entry_id: str,
    rating: RatingRequest,
    knowledge_base: IKnowledgeBase = Depends(get_knowledge_base),
) -> KnowledgeEntry:
    return await knowledge_base.rate_entry(entry_id, rating.rating)


@router.get("/{entry_id}/quality", response_model=QualityAssessment)
async def assess_quality(
    entry_id: str,
    knowledge_base: IKnowledgeBase = Depends(get_knowledge_base),
) -> QualityAssessment:
    return await knowledge_base.assess_quality(entry_id)
