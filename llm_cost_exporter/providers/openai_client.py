"""
OpenAI billing client.

Reads accrued spend and the billing limit of an OpenAI account.
"""

from typing import Optional

import httpx

from llm_cost_exporter.core.errors import DecodeError
from llm_cost_exporter.core.normalizer import normalize_openai_usage
from llm_cost_exporter.core.pricing import PricingTable, price_usage
from llm_cost_exporter.core.usage import ProviderIdentity, UsageRecord

from .base import get_json

USAGE_PATH = "/v1/usage"
SUBSCRIPTION_PATH = "/v1/dashboard/billing/subscription"


class OpenAIUsageProvider:
    """Polls the OpenAI usage and subscription endpoints.

    Holds nothing mutable besides its HTTP client; every poll is
    independent.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4",
        base_url: str = "https://api.openai.com",
        pricing: Optional[PricingTable] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the OpenAI provider.

        Args:
            api_key: OpenAI API key (required)
            model: Model label the usage is published under
            base_url: API root
            pricing: Pricing table for token-derived costs
            timeout: Per-request timeout in seconds
            client: HTTP client to use (one is created if omitted)

        Raises:
            ValueError: If api_key is missing/empty
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        self.identity = ProviderIdentity("openai", model)
        self.base_url = base_url.rstrip("/")
        self.pricing = pricing
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def get_usage_data(self) -> dict:
        return await get_json(
            self._client,
            f"{self.base_url}{USAGE_PATH}",
            headers=self._headers,
            provider_name=self.identity.provider_name,
        )

    async def get_subscription_data(self) -> dict:
        return await get_json(
            self._client,
            f"{self.base_url}{SUBSCRIPTION_PATH}",
            headers=self._headers,
            provider_name=self.identity.provider_name,
        )

    async def fetch_usage(self) -> UsageRecord:
        """Fetch spend and billing status and combine them into a record.

        Raises:
            NetworkError, AuthError, DecodeError: From either sub-call
        """
        usage = await self.get_usage_data()
        subscription = await self.get_subscription_data()

        try:
            reported = normalize_openai_usage(usage, subscription)
        except DecodeError as e:
            e.provider_name = self.identity.provider_name
            raise
        return price_usage(self.identity.model_name, reported, self.pricing)

    async def aclose(self) -> None:
        await self._client.aclose()
