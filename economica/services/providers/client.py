"""Clients that actually talk to premium providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from economica.core.config import ProviderSettings
from economica.core.errors import ProviderClientError, ProviderLimitError
from economica.core.logging import get_logger
from economica.models.provider import ProviderReply
from economica.models.query import Citation, Query

logger = get_logger(__name__)


class ProviderClient(ABC):
    """Anything that can answer a query on behalf of a named provider.

    Implementations raise on failure; the rotation manager turns those
    exceptions into error values.
    """

    @abstractmethod
    async def complete(self, provider: str, query: Query) -> ProviderReply:
        """Send ``query`` to ``provider`` and return its answer."""

    async def close(self) -> None:
        """Release any held connections."""


class HttpProviderClient(ProviderClient):
    """JSON-over-HTTP client for providers that expose an endpoint.

    Each provider's ``endpoint`` receives ``{"query", "type", "context"}``
    and is expected to return ``{"content", "tokens_used", "cost",
    "confidence_score", "citations"}``.
    """

    def __init__(
        self,
        providers: Dict[str, ProviderSettings],
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.providers = providers
        self.api_key = api_key
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=self._headers())
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def complete(self, provider: str, query: Query) -> ProviderReply:
        config = self.providers.get(provider)
        if config is None or not config.endpoint:
            raise ProviderClientError(f"No endpoint configured for provider {provider}", provider=provider)

        client = await self._ensure_client()
        payload: Dict[str, Any] = {
            "query": query.text,
            "type": query.type.value,
            "context": query.context.model_dump() if query.context else None,
        }

        try:
            response = await client.post(
                config.endpoint,
                json=payload,
                timeout=httpx.Timeout(config.timeout_seconds),
            )
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Provider {provider} timed out") from e
        except httpx.TransportError as e:
            raise ProviderClientError(f"Transport error calling {provider}: {e}", provider=provider) from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise ProviderLimitError(
                f"Provider {provider} reported rate limit",
                provider=provider,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 400:
            raise ProviderClientError(
                f"Provider {provider} returned HTTP {response.status_code}",
                provider=provider,
                status_code=response.status_code,
            )

        data = response.json()
        citations = [
            Citation(
                id=str(item.get("id", index)),
                title=item.get("title", "Untitled"),
                source=item.get("source", provider),
                relevance=float(item.get("relevance", 0.0)),
                type=item.get("type", "scientific"),
            )
            for index, item in enumerate(data.get("citations") or [])
        ]
        return ProviderReply(
            content=data.get("content") or "",
            tokens_used=int(data.get("tokens_used", 0)),
            cost=data.get("cost"),
            confidence_score=data.get("confidence_score"),
            citations=citations,
        )
