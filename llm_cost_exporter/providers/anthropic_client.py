"""
Anthropic Admin API client.

Reads month-to-date token usage and cost reports for an organization.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from llm_cost_exporter.config.logger import get_logger
from llm_cost_exporter.core.errors import DecodeError
from llm_cost_exporter.core.normalizer import normalize_anthropic_usage
from llm_cost_exporter.core.pricing import PricingTable, price_usage
from llm_cost_exporter.core.usage import ProviderIdentity, UsageRecord

from .base import get_json

USAGE_REPORT_PATH = "/v1/organizations/usage_report/messages"
COST_REPORT_PATH = "/v1/organizations/cost_report"
API_VERSION = "2023-06-01"
MAX_PAGES = 10

LOGGER = get_logger("llm_cost_exporter.anthropic")


def _month_start(now: datetime) -> str:
    start = now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start.strftime("%Y-%m-%dT%H:%M:%SZ")


class AnthropicUsageProvider:
    """Polls the Anthropic usage and cost reports for the current UTC month."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-opus",
        base_url: str = "https://api.anthropic.com",
        pricing: Optional[PricingTable] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        self.identity = ProviderIdentity("anthropic", model)
        self.base_url = base_url.rstrip("/")
        self.pricing = pricing
        self._headers = {"x-api-key": api_key, "anthropic-version": API_VERSION}
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._now = now

    async def _get_pages(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        pages = []
        page_params = dict(params)
        for _ in range(MAX_PAGES):
            page = await get_json(
                self._client,
                f"{self.base_url}{path}",
                headers=self._headers,
                provider_name=self.identity.provider_name,
                params=page_params,
            )
            pages.append(page)
            next_page = page.get("next_page")
            if not page.get("has_more") or not next_page:
                return pages
            page_params = dict(params, page=next_page)

        LOGGER.warning(
            "Report truncated at %d pages; usage is under-reported",
            MAX_PAGES,
            extra={"provider": self.identity.provider_name, "path": path},
        )
        return pages

    async def fetch_usage(self) -> UsageRecord:
        """Fetch usage and cost reports and combine them into a record.

        Raises:
            NetworkError, AuthError, DecodeError: From either report
        """
        params = {"starting_at": _month_start(self._now()), "bucket_width": "1d"}
        usage_pages = await self._get_pages(USAGE_REPORT_PATH, params)
        cost_pages = await self._get_pages(COST_REPORT_PATH, {"starting_at": params["starting_at"]})

        try:
            reported = normalize_anthropic_usage(usage_pages, cost_pages)
        except DecodeError as e:
            e.provider_name = self.identity.provider_name
            raise
        return price_usage(self.identity.model_name, reported, self.pricing)

    async def aclose(self) -> None:
        await self._client.aclose()
