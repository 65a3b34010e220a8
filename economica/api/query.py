"""Query resolution endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from economica.api.deps import get_orchestrator
from economica.core.interfaces import IQueryOrchestrator
from economica.core.logging import get_logger
from economica.models.query import Priority, Query, QueryContext, QueryType, Response

logger = get_logger(__name__)

router = APIRouter()


class QueryRequest(BaseModel):
    """Incoming question."""
    text: str = Field(..., min_length=1, description="Question text")
    type: QueryType = Field(QueryType.GENERAL, description="Query type")
    context: Optional[QueryContext] = None
    priority: Priority = Priority.MEDIUM
    combined: bool = Field(False, description="Merge knowledge base and premium answers")


@router.post("/query", response_model=Response)
async def resolve_query(
    request: QueryRequest,
    orchestrator: IQueryOrchestrator = Depends(get_orchestrator),
):
    """Resolve a query through the cheapest adequate source."""
    query = Query(text=request.text, type=request.type, context=request.context, priority=request.priority)
    logger.info(
        f"Resolving {query.type.value} query {query.id}",
        extra={"event": "query_received", "query_id": query.id, "combined": request.combined},
    )
    if request.combined:
        return await orchestrator.resolve_combined(query)
    return await orchestrator.resolve(query)
