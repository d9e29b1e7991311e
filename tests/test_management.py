"""Tests for the proxy management API client."""

import json

import httpx
import pytest

from proxyminder.config import ProxySettings
from proxyminder.events import RequestEvent
from proxyminder.exceptions import ManagementError
from proxyminder.management import MANAGEMENT_HEADER, ManagementClient, summarize_usage
from proxyminder.pricing import estimate_cost

USAGE_BODY = {
    "usage": {
        "apis": {
            "POST /v1/messages": {
                "models": {
                    "claude-sonnet-4": {
                        "details": [
                            {"tokens": {"input_tokens": 1000, "output_tokens": 200}},
                            {"tokens": {"input_tokens": 500, "output_tokens": 100}},
                        ]
                    }
                }
            },
            "POST /v1/chat/completions": {
                "models": {
                    "gpt-4o": {"details": [{"tokens": {"input_tokens": 300, "output_tokens": 50}}, {"failed": True}]}
                }
            },
        }
    }
}


def make_client(handler) -> ManagementClient:
    return ManagementClient(8317, "secret", transport=httpx.MockTransport(handler))


class TestSummarizeUsage:
    def test_sums_tokens_across_apis(self):
        summary = summarize_usage(USAGE_BODY)

        assert summary.input_tokens == 1800
        assert summary.output_tokens == 350
        assert summary.models == {"claude-sonnet-4": [2, 1500, 300], "gpt-4o": [1, 300, 50]}

    def test_cost_is_priced_per_model(self):
        summary = summarize_usage(USAGE_BODY)

        expected = estimate_cost("claude-sonnet-4", 1500, 300) + estimate_cost("gpt-4o", 300, 50)
        assert summary.cost_estimate == pytest.approx(expected)

    def test_empty_usage(self):
        summary = summarize_usage({"usage": {}})
        assert summary.input_tokens == 0
        assert summary.cost_estimate == 0

    @pytest.mark.parametrize("body", [{}, {"usage": None}, [], "nope"])
    def test_missing_usage_raises(self, body):
        with pytest.raises(ManagementError):
            summarize_usage(body)


class TestPutSetting:
    @pytest.mark.asyncio
    async def test_sends_value_with_key(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"status": "ok"})

        ok = await make_client(handler).put_setting("usage-statistics-enabled", True)

        assert ok is True
        request = seen[0]
        assert request.method == "PUT"
        assert request.url == "http://127.0.0.1:8317/v0/management/usage-statistics-enabled"
        assert request.headers[MANAGEMENT_HEADER] == "secret"
        assert json.loads(request.content) == {"value": True}

    @pytest.mark.asyncio
    async def test_rejection_returns_false(self):
        ok = await make_client(lambda request: httpx.Response(401)).put_setting("usage-statistics-enabled", True)
        assert ok is False

    @pytest.mark.asyncio
    async def test_unreachable_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        ok = await make_client(handler).put_setting("usage-statistics-enabled", True)
        assert ok is False

    @pytest.mark.asyncio
    async def test_sync_settings_pushes_both(self):
        seen = {}

        def handler(request):
            seen[request.url.path] = json.loads(request.content)["value"]
            return httpx.Response(200)

        settings = ProxySettings(usage_stats_enabled=False, force_model_mappings=True)
        results = await make_client(handler).sync_settings(settings)

        assert results == {"usage-statistics-enabled": True, "ampcode/force-model-mappings": True}
        assert seen == {
            "/v0/management/usage-statistics-enabled": False,
            "/v0/management/ampcode/force-model-mappings": True,
        }


class TestUsage:
    @pytest.mark.asyncio
    async def test_get_usage(self):
        client = make_client(lambda request: httpx.Response(200, json=USAGE_BODY))
        assert await client.get_usage() == USAGE_BODY

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = make_client(lambda request: httpx.Response(500))
        with pytest.raises(ManagementError, match="500"):
            await client.get_usage()

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        client = make_client(lambda request: httpx.Response(200, content=b"not json"))
        with pytest.raises(ManagementError):
            await client.get_usage()

    @pytest.mark.asyncio
    async def test_unreachable_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ManagementError, match="Is the proxy running"):
            await make_client(handler).get_usage()

    @pytest.mark.asyncio
    async def test_sync_usage_overwrites_totals(self, store):
        store.append(
            RequestEvent(
                id="req_1",
                timestamp=1_700_000_000_000,
                provider="claude",
                model="claude-sonnet-4",
                method="POST",
                path="/v1/messages",
                status=200,
                duration_ms=100,
                tokens_in=5,
                tokens_out=5,
            )
        )
        client = make_client(lambda request: httpx.Response(200, json=USAGE_BODY))

        record = await client.sync_usage(store)

        assert record.total_tokens_in == 1800
        assert record.total_tokens_out == 350
        stored = store.load()
        assert stored.total_tokens_in == 1800
        assert len(stored.events) == 1
