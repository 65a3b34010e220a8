"""Query key generation for deduplication and caching.

Two keys come out of a query:
- the normalized query key, shared by every concurrent request for the same
  ``(text, type, context)`` and used by the single-flight group
- the cache key, the query key namespaced by type and key format version
"""

import hashlib
import json
import re
from typing import Any, Dict, Optional

from economica.models.query import Query, QueryContext, QueryType

_WHITESPACE = re.compile(r"\s+")


class QueryKeyGenerator:
    """Cache and dedup key generation.

    All cache keys include a version prefix to enable invalidation when the
    key format or cached payload structure changes.

    Key format: query:{version}:{type}:{query_hash}

    Examples:
        query:v1:protocol:3f1c2a...
        query:v1:research:9b8e41...
    """

    VERSION = "v1"

    @staticmethod
    def normalize_text(text: str) -> str:
        """Lower-case and collapse whitespace."""
        return _WHITESPACE.sub(" ", text.strip().lower())

    @staticmethod
    def _context_payload(context: Optional[QueryContext]) -> Dict[str, Any]:
        if context is None:
            return {}
        payload = context.model_dump(mode="json", exclude_defaults=True)
        if "tags" in payload:
            payload["tags"] = sorted(tag.lower() for tag in payload["tags"])
        return payload

    @classmethod
    def query_key(cls, query: Query) -> str:
        """Normalized key over text, type and context.

        Args:
            query: The query to key.

        Returns:
            md5 hex digest.
        """
        content = "|".join([
            cls.normalize_text(query.text),
            query.type.value,
            json.dumps(cls._context_payload(query.context), sort_keys=True),
        ])
        return hashlib.md5(content.encode("utf-8")).hexdigest()

    @classmethod
    def cache_key(cls, query_type: QueryType, query_key: str) -> str:
        """Cache key for a normalized query key."""
        return f"query:{cls.VERSION}:{query_type.value}:{query_key}"

    @classmethod
    def for_query(cls, query: Query) -> str:
        """Shortcut for ``cache_key(query.type, query_key(query))``."""
        return cls.cache_key(query.type, cls.query_key(query))
