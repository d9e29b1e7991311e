"""
Client for the supervised proxy's management API.

The proxy exposes /v0/management/* on localhost, authenticated with a shared
secret header. It is used to push settings that may differ from the config
file and to pull the proxy's own usage statistics (the access log carries
no token counts). Settings pushes are best effort: failures are logged and
never raised.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field

import httpx

from .config import ProxySettings
from .events import HistoryRecord
from .exceptions import ManagementError
from .history import HistoryStore
from .pricing import estimate_cost

logger = logging.getLogger(__name__)

MANAGEMENT_HEADER = "X-Management-Key"


@dataclass
class UsageSummary:
    """Token totals reported by the proxy."""

    input_tokens: int = 0
    output_tokens: int = 0
    # model -> [requests, input_tokens, output_tokens]
    models: dict[str, list[int]] = field(default_factory=dict)

    @property
    def cost_estimate(self) -> float:
        return sum(estimate_cost(model, tokens_in, tokens_out) for model, (_, tokens_in, tokens_out) in self.models.items())


def summarize_usage(body: dict) -> UsageSummary:
    """
    Reduce a /usage response to token totals.

    Expected shape:
        {"usage": {"apis": {"POST /v1/messages": {"models": {"<model>": {"details": [
            {"tokens": {"input_tokens": N, "output_tokens": N}}, ...]}}}}}}

    Raises:
        ManagementError: If the response has no "usage" object.
    """
    usage = body.get("usage") if isinstance(body, dict) else None
    if not isinstance(usage, dict):
        raise ManagementError("Missing 'usage' field in response")

    summary = UsageSummary()
    models: dict[str, list[int]] = defaultdict(lambda: [0, 0, 0])

    for api_data in (usage.get("apis") or {}).values():
        for model_name, model_data in ((api_data or {}).get("models") or {}).items():
            for detail in (model_data or {}).get("details") or []:
                tokens = (detail or {}).get("tokens")
                if not isinstance(tokens, dict):
                    continue
                tokens_in = int(tokens.get("input_tokens") or 0)
                tokens_out = int(tokens.get("output_tokens") or 0)
                summary.input_tokens += tokens_in
                summary.output_tokens += tokens_out
                entry = models[model_name]
                entry[0] += 1
                entry[1] += tokens_in
                entry[2] += tokens_out

    summary.models = dict(models)
    return summary


class ManagementClient:
    """Async calls to http://127.0.0.1:<port>/v0/management."""

    def __init__(self, port: int, key: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport = None):
        self.base_url = f"http://127.0.0.1:{port}/v0/management"
        self._key = key
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={MANAGEMENT_HEADER: self._key},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def put_setting(self, endpoint: str, value) -> bool:
        """PUT {"value": value} to a settings endpoint. Returns True on success."""
        try:
            async with self._client() as client:
                response = await client.put(f"/{endpoint}", json={"value": value})
            if response.is_success:
                logger.debug(f"Synced management setting {endpoint}={value}")
                return True
            logger.warning(f"Management API rejected {endpoint}: {response.status_code} {response.text}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Could not sync management setting {endpoint}: {e}")
            return False

    async def sync_settings(self, settings: ProxySettings) -> dict[str, bool]:
        """Push runtime settings that the proxy may not have picked up from its config."""
        results = {
            "usage-statistics-enabled": await self.put_setting("usage-statistics-enabled", settings.usage_stats_enabled),
            "ampcode/force-model-mappings": await self.put_setting(
                "ampcode/force-model-mappings", settings.force_model_mappings
            ),
        }
        return results

    async def get_usage(self) -> dict:
        """
        Fetch the proxy's usage statistics.

        Raises:
            ManagementError: If the proxy is unreachable or returns an error.
        """
        try:
            async with self._client() as client:
                response = await client.get("/usage", timeout=5.0)
        except httpx.HTTPError as e:
            raise ManagementError(f"Failed to fetch usage: {e}. Is the proxy running?") from e

        if not response.is_success:
            raise ManagementError(f"Usage API returned status: {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise ManagementError(f"Failed to parse usage response: {e}") from e

    async def sync_usage(self, store: HistoryStore) -> HistoryRecord:
        """Replace the history's running totals with the proxy's own counts."""
        summary = summarize_usage(await self.get_usage())
        record = store.set_totals(summary.input_tokens, summary.output_tokens, summary.cost_estimate)
        logger.info(
            f"Synced usage from proxy: {summary.input_tokens} in, {summary.output_tokens} out, "
            f"${summary.cost_estimate:.4f}"
        )
        return record
