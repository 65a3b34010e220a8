"""Curated knowledge base with ranked search and authoring validation."""

import json
import re
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import aiofiles
from pydantic import ValidationError as PydanticValidationError

from economica.core.config import KnowledgeSettings
from economica.core.errors import EntryNotFoundError, KnowledgeValidationError
from economica.core.logging import get_logger
from economica.models.knowledge import (
    EvidenceLevel,
    KnowledgeEntry,
    KnowledgeEntryCreate,
    KnowledgeEntryUpdate,
    KnowledgeStats,
    QualityAssessment,
    SearchFilters,
    SearchQuery,
    SearchResponse,
    SearchResult,
    SearchSorting,
    ValidationReport,
)
from economica.services.performance_monitor import PerformanceMonitor

logger = get_logger(__name__)

# Additive relevance weights
TITLE_FULL_MATCH = 100
TITLE_TERM_MATCH = 80
CONTENT_FULL_MATCH = 70
CONTENT_TERM_MATCH = 50
TAG_FULL_MATCH = 90
TAG_TERM_MATCH = 60
TYPE_MATCH = 30
USAGE_BOOST = 0.1
RATING_BOOST = 5
CONFIDENCE_BOOST = 0.5

MAX_HIGHLIGHTS = 3
SNIPPET_RADIUS = 75


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def search_terms(text: str) -> List[str]:
    """Lower-cased whitespace tokens longer than two characters."""
    return [term for term in text.lower().split() if len(term) > 2]


def highlight(text: str, needle: str) -> str:
    """Wrap case-insensitive occurrences of ``needle`` in <mark> tags."""
    if not needle:
        return text
    return re.sub(f"({re.escape(needle)})", r"<mark>\1</mark>", text, flags=re.IGNORECASE)


def snippet(content: str, needle: str) -> str:
    """A window of content around the first occurrence of ``needle``."""
    index = content.lower().find(needle.lower())
    if index == -1:
        return content[:2 * SNIPPET_RADIUS] + "..."

    start = max(0, index - SNIPPET_RADIUS)
    end = min(len(content), index + len(needle) + SNIPPET_RADIUS)
    text = content[start:end]
    if start > 0:
        text = "..." + text
    if end < len(content):
        text = text + "..."
    return highlight(text, needle)


class KnowledgeBaseService:
    """In-memory knowledge base.

    Entries are owned here and change only through ``add_entry``,
    ``update_entry``, ``delete_entry`` and ``rate_entry``. Reading an entry by
    id counts as a use.
    """

    def __init__(
        self,
        settings: Optional[KnowledgeSettings] = None,
        monitor: Optional[PerformanceMonitor] = None,
        entries: Iterable[KnowledgeEntry] = (),
    ):
        self.settings = settings or KnowledgeSettings()
        self.monitor = monitor
        self._entries: Dict[str, KnowledgeEntry] = {}
        self.load_entries(entries)

    def __len__(self) -> int:
        return len(self._entries)

    # =========================================================================
    # Loading
    # =========================================================================

    def load_entries(self, entries: Iterable[KnowledgeEntry]) -> int:
        """Insert entries as-is, bypassing authoring validation."""
        count = 0
        for entry in entries:
            self._entries[entry.id] = entry
            count += 1
        return count

    async def load_from_file(self, path: str) -> int:
        """Load a JSON array of entries.

        Args:
            path: JSON file path.

        Returns:
            Number of entries loaded.
        """
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()

        try:
            records = json.loads(raw)
            entries = [KnowledgeEntry.model_validate(record) for record in records]
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Invalid knowledge seed file {path}: {e}")
            raise

        loaded = self.load_entries(entries)
        logger.info(f"Loaded {loaded} knowledge entries from {path}")
        return loaded

    # =========================================================================
    # Search
    # =========================================================================

    async def search(self, query: SearchQuery) -> SearchResponse:
        """Rank, filter, sort and paginate entries for a query."""
        start_time = time.perf_counter()

        results = self._score_all(query)
        results = self._apply_filters(results, query.filters)
        results = self._apply_sorting(results, query.sorting)

        total = len(results)
        offset = (query.pagination.page - 1) * query.pagination.limit
        page = results[offset:offset + query.pagination.limit]

        processing_time = (time.perf_counter() - start_time) * 1000
        if self.monitor:
            self.monitor.record_search(len(page), total, processing_time)

        return SearchResponse(
            results=page,
            total=total,
            processing_time=processing_time,
            query=query,
            suggestions=self._suggestions(query.text) if total == 0 else [],
        )

    def _score_all(self, query: SearchQuery) -> List[SearchResult]:
        text = query.text.strip().lower()
        terms = search_terms(text)
        if not text:
            return []

        results = []
        for entry in self._entries.values():
            result = self._score(entry, text, terms, query)
            if result is not None:
                results.append(result)
        return results

    def _score(self, entry: KnowledgeEntry, text: str, terms: List[str], query: SearchQuery) -> Optional[SearchResult]:
        score = 0.0
        highlights: List[str] = []
        matched_tags: List[str] = []

        title = entry.title.lower()
        if text in title:
            score += TITLE_FULL_MATCH
            highlights.append(highlight(entry.title, text))
        else:
            score += TITLE_TERM_MATCH * sum(1 for term in terms if term in title)

        content = entry.content.lower()
        if text in content:
            score += CONTENT_FULL_MATCH
            highlights.append(snippet(entry.content, text))
        else:
            score += CONTENT_TERM_MATCH * sum(1 for term in terms if term in content)

        for tag in entry.tags:
            tag_lower = tag.lower()
            if text in tag_lower:
                score += TAG_FULL_MATCH
                matched_tags.append(tag)
                continue
            hits = sum(1 for term in terms if term in tag_lower)
            if hits:
                score += TAG_TERM_MATCH * hits
                matched_tags.append(tag)

        # Boosts only rank entries that matched the text at all
        if score == 0:
            return None

        if query.type is not None and entry.type == query.type:
            score += TYPE_MATCH
        score += entry.usage_count * USAGE_BOOST
        score += entry.avg_rating * RATING_BOOST
        score += entry.confidence_score * CONFIDENCE_BOOST

        matched_tags = list(dict.fromkeys(matched_tags))
        return SearchResult(
            entry=entry.model_copy(),
            relevance_score=round(score, 2),
            highlights=highlights[:MAX_HIGHLIGHTS],
            matched_tags=matched_tags,
            reasoning=self._reasoning(entry, matched_tags),
        )

    @staticmethod
    def _reasoning(entry: KnowledgeEntry, matched_tags: List[str]) -> str:
        reasons = []
        if matched_tags:
            reasons.append(f"Matched tags: {', '.join(matched_tags)}")
        if entry.confidence_score > 90:
            reasons.append("High confidence content")
        if entry.usage_count > 100:
            reasons.append("Frequently used")
        if entry.avg_rating > 4.5:
            reasons.append("Highly rated")
        if entry.evidence == EvidenceLevel.HIGH:
            reasons.append("Strong evidence base")
        return "; ".join(reasons)

    @staticmethod
    def _apply_filters(results: List[SearchResult], filters: SearchFilters) -> List[SearchResult]:
        def keep(result: SearchResult) -> bool:
            entry = result.entry
            if filters.tags:
                wanted = [tag.lower() for tag in filters.tags]
                entry_tags = [tag.lower() for tag in entry.tags]
                if not any(w in tag for w in wanted for tag in entry_tags):
                    return False
            if filters.specialty:
                if not entry.specialty or filters.specialty.lower() not in entry.specialty.lower():
                    return False
            if filters.min_confidence is not None and entry.confidence_score < filters.min_confidence:
                return False
            if filters.evidence_levels and entry.evidence not in filters.evidence_levels:
                return False
            if filters.date_range is not None:
                if filters.date_range.start and entry.updated_at < filters.date_range.start:
                    return False
                if filters.date_range.end and entry.updated_at > filters.date_range.end:
                    return False
            if filters.author:
                if not entry.author or filters.author.lower() not in entry.author.lower():
                    return False
            return True

        return [result for result in results if keep(result)]

    @staticmethod
    def _apply_sorting(results: List[SearchResult], sorting: SearchSorting) -> List[SearchResult]:
        sort_keys = {
            "relevance": lambda r: r.relevance_score,
            "confidence": lambda r: r.entry.confidence_score,
            "date": lambda r: r.entry.updated_at,
            "usage": lambda r: r.entry.usage_count,
        }
        return sorted(results, key=sort_keys[sorting.field], reverse=sorting.order == "desc")

    def _suggestions(self, text: str, limit: int = 5) -> List[str]:
        terms = search_terms(text)
        tag_counts = Counter(tag.lower() for entry in self._entries.values() for tag in entry.tags)
        suggestions = [
            tag for tag, _ in tag_counts.most_common()
            if any(term[:4] in tag or tag in term for term in terms)
        ]
        return suggestions[:limit]

    # =========================================================================
    # Entry Access
    # =========================================================================

    async def get_entry(self, entry_id: str) -> Optional[KnowledgeEntry]:
        """Fetch an entry by id, counting the read."""
        entry = self._entries.get(entry_id)
        if entry is None:
            return None
        entry.usage_count += 1
        return entry.model_copy()

    def list_entries(self) -> List[KnowledgeEntry]:
        return [entry.model_copy() for entry in self._entries.values()]

    # =========================================================================
    # Authoring
    # =========================================================================

    def validate_entry(self, entry: KnowledgeEntryCreate) -> ValidationReport:
        """Check authored content. Errors block acceptance, warnings don't."""
        errors: List[str] = []
        warnings: List[str] = []
        score = 100.0

        if len(entry.title.strip()) < self.settings.min_title_length:
            errors.append(f"Title must be at least {self.settings.min_title_length} characters")
            score -= 20
        if len(entry.content.strip()) < self.settings.min_entry_content_length:
            errors.append(f"Content must be at least {self.settings.min_entry_content_length} characters")
            score -= 30
        if not entry.tags:
            warnings.append("No tags: entry will only match on title and content")
            score -= 10
        if not entry.sources:
            warnings.append("No sources cited")
            score -= 15
        if entry.confidence_score < self.settings.confidence_threshold:
            warnings.append(
                f"Confidence score below threshold ({self.settings.confidence_threshold}); "
                "entry will only be served as a degraded answer"
            )
            score -= 10

        return ValidationReport(is_valid=not errors, score=max(0.0, score), errors=errors, warnings=warnings)

    def _validate_or_raise(self, entry: KnowledgeEntryCreate) -> ValidationReport:
        report = self.validate_entry(entry)
        if not report.is_valid:
            raise KnowledgeValidationError("Knowledge entry failed validation", report.errors, report.warnings)
        for warning in report.warnings:
            logger.warning(f"Knowledge entry '{entry.title}': {warning}")
        return report

    async def add_entry(self, data: KnowledgeEntryCreate) -> KnowledgeEntry:
        """Validate and store a new entry.

        Raises:
            KnowledgeValidationError: Title or content too short.
        """
        self._validate_or_raise(data)

        entry = KnowledgeEntry(**data.model_dump())
        self._entries[entry.id] = entry
        logger.info(f"Added knowledge entry {entry.id}: {entry.title}")
        return entry.model_copy()

    async def update_entry(self, entry_id: str, patch: KnowledgeEntryUpdate) -> KnowledgeEntry:
        """Apply a partial update after validating the merged entry.

        Raises:
            EntryNotFoundError: Unknown id.
            KnowledgeValidationError: The merged entry is invalid.
        """
        current = self._entries.get(entry_id)
        if current is None:
            raise EntryNotFoundError(entry_id)

        changes = patch.model_dump(exclude_unset=True)
        merged = current.model_copy(update=changes)
        try:
            candidate = KnowledgeEntryCreate(**merged.model_dump(include=set(KnowledgeEntryCreate.model_fields)))
        except PydanticValidationError as e:
            errors = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()]
            raise KnowledgeValidationError("Knowledge entry update is invalid", errors) from e
        self._validate_or_raise(candidate)

        merged.updated_at = _utcnow()
        self._entries[entry_id] = merged
        logger.info(f"Updated knowledge entry {entry_id}: {sorted(changes)}")
        return merged.model_copy()

    async def delete_entry(self, entry_id: str) -> bool:
        """Remove an entry. Returns False if it didn't exist."""
        removed = self._entries.pop(entry_id, None) is not None
        if removed:
            logger.info(f"Deleted knowledge entry {entry_id}")
        return removed

    async def rate_entry(self, entry_id: str, rating: float) -> KnowledgeEntry:
        """Fold a 1-5 user rating into the entry's running average."""
        if not 1 <= rating <= 5:
            raise KnowledgeValidationError("Rating must be between 1 and 5", [f"Invalid rating: {rating}"])

        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        entry.avg_rating = (entry.avg_rating * entry.rating_count + rating) / (entry.rating_count + 1)
        entry.rating_count += 1
        return entry.model_copy()

    # =========================================================================
    # Reporting
    # =========================================================================

    async def assess_quality(self, entry_id: str) -> QualityAssessment:
        """Heuristic editorial quality report for one entry."""
        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        accuracy = 70.0
        if entry.sources:
            accuracy += 15
        if entry.evidence == EvidenceLevel.HIGH:
            accuracy += 10

        completeness = 60.0
        if len(entry.content) > 500:
            completeness += 20
        if len(entry.tags) > 3:
            completeness += 10
        if len(entry.sources) > 2:
            completeness += 10

        relevance = 75.0
        if entry.usage_count > 50:
            relevance += 15
        if entry.avg_rating > 4.0:
            relevance += 10

        clarity = 80.0
        if "\n" in entry.content:
            clarity += 20

        scores = [min(100.0, value) for value in (accuracy, completeness, relevance, clarity)]
        recommendations = []
        if not entry.sources:
            recommendations.append("Cite at least one source")
        if len(entry.tags) <= 3:
            recommendations.append("Add more tags to improve matching")
        if len(entry.content) <= 500:
            recommendations.append("Expand the content")

        return QualityAssessment(
            entry_id=entry_id,
            accuracy=scores[0],
            completeness=scores[1],
            relevance=scores[2],
            clarity=scores[3],
            overall=round(sum(scores) / 4, 1),
            recommendations=recommendations,
        )

    def get_stats(self) -> KnowledgeStats:
        entries = list(self._entries.values())
        by_type = Counter(entry.type.value for entry in entries)
        by_specialty = Counter(entry.specialty or "unspecified" for entry in entries)
        top: List[Dict[str, Any]] = [
            {"id": entry.id, "title": entry.title, "usage_count": entry.usage_count}
            for entry in sorted(entries, key=lambda e: e.usage_count, reverse=True)[:10]
        ]

        return KnowledgeStats(
            total_entries=len(entries),
            entries_by_type=dict(by_type),
            entries_by_specialty=dict(by_specialty),
            average_confidence=sum(e.confidence_score for e in entries) / len(entries) if entries else 0.0,
            average_rating=sum(e.avg_rating for e in entries) / len(entries) if entries else 0.0,
            total_usage=sum(e.usage_count for e in entries),
            top_entries=top,
        )
