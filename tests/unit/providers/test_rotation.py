"""Tests for provider selection and metered calls."""

import httpx
import pytest

from economica.core.config import ProviderSettings
from economica.core.errors import ErrorKind, ProviderClientError, ProviderLimitError
from economica.models.provider import ProviderReply, UsageWindow
from economica.models.query import Citation, ConfidenceLevel, Query, QueryType
from economica.services.providers import HttpProviderClient, ProviderRotationManager

from conftest import FakeProviderClient


def _exhaust(tracker, provider):
    window = tracker.get_account(provider).windows[UsageWindow.HOURLY]
    window.used = window.limit


class TestSelection:
    """Candidate ordering and strategies."""

    def test_candidate_order(self, rotation):
        assert rotation.candidates(QueryType.PROTOCOL) == [
            "claude_pro", "gemini_pro", "chatgpt_plus", "perplexity_pro", "mars_ai_pro",
        ]

    @pytest.mark.asyncio
    async def test_first_preferred_provider_wins(self, rotation):
        assert await rotation.select_provider(QueryType.PROTOCOL) == "claude_pro"
        assert await rotation.select_provider(QueryType.RESEARCH) == "perplexity_pro"

    @pytest.mark.asyncio
    async def test_exclude(self, rotation):
        assert await rotation.select_provider(QueryType.PROTOCOL, exclude={"claude_pro"}) == "gemini_pro"

    @pytest.mark.asyncio
    async def test_blocked_provider_is_skipped(self, rotation, tracker):
        _exhaust(tracker, "claude_pro")

        assert await rotation.select_provider(QueryType.PROTOCOL) == "gemini_pro"

    @pytest.mark.asyncio
    async def test_disabled_provider_is_never_selected(self, rotation, tracker):
        for name in ("gemini_pro", "chatgpt_plus", "claude_pro", "perplexity_pro"):
            _exhaust(tracker, name)

        assert await rotation.select_provider(QueryType.GENERAL) is None

    @pytest.mark.asyncio
    async def test_cost_optimized(self, settings, tracker, provider_client):
        manager = ProviderRotationManager(settings, tracker, provider_client, strategy="cost_optimized")

        # claude_pro is preferred first but gemini_pro is cheaper
        assert await manager.select_provider(QueryType.PROTOCOL) == "gemini_pro"

    @pytest.mark.asyncio
    async def test_least_used(self, settings, tracker, provider_client):
        manager = ProviderRotationManager(settings, tracker, provider_client, strategy="least_used")
        tracker.get_account("claude_pro").windows[UsageWindow.HOURLY].used = 10

        assert await manager.select_provider(QueryType.PROTOCOL) == "gemini_pro"

    @pytest.mark.asyncio
    async def test_best_performance(self, settings, tracker, provider_client):
        manager = ProviderRotationManager(settings, tracker, provider_client, strategy="best_performance")
        tracker.get_account("gemini_pro").success_rate = 60.0

        assert await manager.select_provider(QueryType.PROTOCOL) == "claude_pro"

    @pytest.mark.asyncio
    async def test_round_robin_cycles_preferred_pool(self, settings, tracker, provider_client):
        manager = ProviderRotationManager(settings, tracker, provider_client, strategy="round_robin")

        picks = [await manager.select_provider(QueryType.PROTOCOL) for _ in range(3)]

        assert picks == ["claude_pro", "gemini_pro", "claude_pro"]

    def test_unknown_strategy_falls_back_to_preference(self, settings, tracker, provider_client):
        manager = ProviderRotationManager(settings, tracker, provider_client, strategy="random")
        assert manager.strategy == "preference"

    def test_timeout_is_tighter_of_provider_and_type(self, rotation):
        assert rotation.timeout_for("chatgpt_plus", QueryType.EMERGENCY) == 10.0
        assert rotation.timeout_for("gemini_pro", QueryType.RESEARCH) == 30.0


class TestCall:
    """Metered calls returning values."""

    @pytest.mark.asyncio
    async def test_successful_call(self, rotation, tracker, monitor):
        query = Query(text="protocolo LCA", type=QueryType.PROTOCOL)

        result = await rotation.call("claude_pro", query)

        assert result.ok
        response = result.response
        assert response.provider == "claude_pro"
        assert response.query_id == query.id
        assert response.cost == pytest.approx(0.004)
        assert response.tokens_used == 120
        assert response.confidence == ConfidenceLevel.HIGH
        assert tracker.get_account("claude_pro").total_calls == 1
        assert monitor.counters["provider_claude_pro_success"] == 1

    @pytest.mark.asyncio
    async def test_reply_cost_overrides_configured_cost(self, settings, tracker):
        client = FakeProviderClient({"gemini_pro": ProviderReply(content="Answer", cost=0.01)})
        manager = ProviderRotationManager(settings, tracker, client)

        result = await manager.call("gemini_pro", Query(text="anything"))

        assert result.response.cost == pytest.approx(0.01)
        assert tracker.get_account("gemini_pro").total_cost == pytest.approx(0.01)

    @pytest.mark.asyncio
    async def test_missing_confidence_defaults_to_high(self, settings, tracker):
        client = FakeProviderClient({"gemini_pro": ProviderReply(content="Answer")})
        manager = ProviderRotationManager(settings, tracker, client)

        result = await manager.call("gemini_pro", Query(text="anything"))

        assert result.response.confidence == ConfidenceLevel.HIGH

    @pytest.mark.asyncio
    async def test_timeout_is_a_value(self, settings, tracker):
        settings.query_types["general"].max_response_time = 0.05
        manager = ProviderRotationManager(settings, tracker, FakeProviderClient(delay=1.0))

        result = await manager.call("gemini_pro", Query(text="slow"))

        assert not result.ok
        assert result.failure.kind == ErrorKind.PROVIDER_TIMEOUT
        assert result.failure.retryable
        assert tracker.get_account("gemini_pro").consecutive_failures == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,kind", [
        (ProviderLimitError("quota spent", provider="gemini_pro"), ErrorKind.LIMIT_EXCEEDED),
        (ConnectionError("connection refused"), ErrorKind.NETWORK_ERROR),
        (ValueError("malformed answer"), ErrorKind.NO_SUITABLE_RESPONSE),
    ])
    async def test_client_errors_are_categorized(self, settings, tracker, error, kind):
        manager = ProviderRotationManager(settings, tracker, FakeProviderClient({"gemini_pro": error}))

        result = await manager.call("gemini_pro", Query(text="anything"))

        assert result.failure.kind == kind
        assert result.failure.provider == "gemini_pro"

    @pytest.mark.asyncio
    async def test_empty_answer_is_not_suitable(self, settings, tracker):
        client = FakeProviderClient({"gemini_pro": ProviderReply(content="   ")})
        manager = ProviderRotationManager(settings, tracker, client)

        result = await manager.call("gemini_pro", Query(text="anything"))

        assert result.failure.kind == ErrorKind.NO_SUITABLE_RESPONSE
        assert not result.failure.retryable

    @pytest.mark.asyncio
    async def test_null_answer_is_a_failure_value(self, settings, tracker):
        client = FakeProviderClient({"gemini_pro": ProviderReply(content=None)})
        manager = ProviderRotationManager(settings, tracker, client)

        result = await manager.call("gemini_pro", Query(text="anything"))

        assert result.failure.kind == ErrorKind.NO_SUITABLE_RESPONSE
        assert tracker.get_account("gemini_pro").consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_blocked_provider_is_not_called(self, rotation, tracker, provider_client):
        _exhaust(tracker, "gemini_pro")

        result = await rotation.call("gemini_pro", Query(text="anything"))

        assert result.failure.kind == ErrorKind.LIMIT_EXCEEDED
        assert provider_client.calls == []

    @pytest.mark.asyncio
    async def test_disabled_and_unknown_providers(self, rotation, provider_client):
        disabled = await rotation.call("mars_ai_pro", Query(text="anything"))
        unknown = await rotation.call("ghost", Query(text="anything"))

        assert disabled.failure.kind == ErrorKind.NO_PROVIDER_AVAILABLE
        assert unknown.failure.kind == ErrorKind.NO_PROVIDER_AVAILABLE
        assert provider_client.calls == []

    @pytest.mark.asyncio
    async def test_status_snapshot(self, rotation):
        status = await rotation.get_status()

        assert {entry["provider"] for entry in status} == set(rotation.settings.providers)
        mars = next(entry for entry in status if entry["provider"] == "mars_ai_pro")
        assert mars["status"] == "disabled"


def _http_client(handler, endpoint="https://provider.test/complete"):
    providers = {"gemini_pro": ProviderSettings(display_name="Gemini Pro", endpoint=endpoint)}
    return HttpProviderClient(
        providers,
        api_key="secret",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestHttpProviderClient:
    """HTTP transport against a mocked endpoint."""

    @pytest.mark.asyncio
    async def test_parses_reply(self):
        seen = {}

        def handler(request):
            seen["body"] = request.content
            return httpx.Response(200, json={
                "content": "Use progressive loading.",
                "tokens_used": 80,
                "cost": 0.001,
                "confidence_score": 92,
                "citations": [{"title": "Consensus 2023", "source": "BJSM", "relevance": 0.9, "type": "guideline"}],
            })

        client = _http_client(handler)
        reply = await client.complete("gemini_pro", Query(text="tendinopathy", type=QueryType.PROTOCOL))

        assert reply.content == "Use progressive loading."
        assert reply.tokens_used == 80
        assert reply.confidence_score == 92
        assert reply.citations == [
            Citation(id="0", title="Consensus 2023", source="BJSM", relevance=0.9, type="guideline"),
        ]
        assert b'"type":"protocol"' in seen["body"].replace(b" ", b"")
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        client = _http_client(lambda request: httpx.Response(429, headers={"Retry-After": "30"}))

        with pytest.raises(ProviderLimitError) as exc_info:
            await client.complete("gemini_pro", Query(text="anything"))

        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = _http_client(lambda request: httpx.Response(502))

        with pytest.raises(ProviderClientError) as exc_info:
            await client.complete("gemini_pro", Query(text="anything"))

        assert exc_info.value.details["status_code"] == 502

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        client = _http_client(handler)

        with pytest.raises(TimeoutError):
            await client.complete("gemini_pro", Query(text="anything"))

    @pytest.mark.asyncio
    async def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _http_client(handler)

        with pytest.raises(ProviderClientError):
            await client.complete("gemini_pro", Query(text="anything"))

    @pytest.mark.asyncio
    async def test_missing_endpoint(self):
        client = _http_client(lambda request: httpx.Response(200), endpoint=None)

        with pytest.raises(ProviderClientError):
            await client.complete("gemini_pro", Query(text="anything"))

    @pytest.mark.asyncio
    async def test_null_content_reads_as_empty(self):
        client = _http_client(lambda request: httpx.Response(200, json={"content": None, "tokens_used": 3}))

        reply = await client.complete("gemini_pro", Query(text="tendinopathy"))

        assert reply.content == ""
        await client.close()
