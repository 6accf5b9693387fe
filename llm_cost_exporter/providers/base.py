"""
Provider capability interface.

Each provider is an independent implementation selected at startup;
there is no shared base class.
"""

from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from llm_cost_exporter.core.errors import AuthError, DecodeError, NetworkError
from llm_cost_exporter.core.usage import ProviderIdentity, UsageRecord


class UsageProvider(Protocol):
    """Anything that can be polled for a UsageRecord."""
    identity: ProviderIdentity

    async def fetch_usage(self) -> UsageRecord:
        ...

    async def aclose(self) -> None:
        ...


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: Mapping[str, str],
    provider_name: str,
    params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """GET a JSON object, mapping failures onto the provider error taxonomy.

    Raises:
        NetworkError: On transport failure, timeout or unexpected status
        AuthError: On 401/403
        DecodeError: If the body is not a JSON object
    """
    try:
        response = await client.get(url, headers=headers, params=params)
    except httpx.TimeoutException as e:
        raise NetworkError(f"{provider_name}: request to {url} timed out", provider_name) from e
    except httpx.HTTPError as e:
        raise NetworkError(
            f"{provider_name}: request to {url} failed: {e.__class__.__name__}: {e}", provider_name
        ) from e

    if response.status_code in (401, 403):
        raise AuthError(f"{provider_name}: credentials rejected ({response.status_code})", provider_name)
    if response.status_code >= 400:
        raise NetworkError(f"{provider_name}: {url} returned HTTP {response.status_code}", provider_name)

    try:
        payload = response.json()
    except ValueError as e:
        raise DecodeError(f"{provider_name}: response from {url} is not JSON", provider_name) from e
    if not isinstance(payload, dict):
        raise DecodeError(f"{provider_name}: response from {url} is not a JSON object", provider_name)
    return payload
