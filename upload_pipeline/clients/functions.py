"""Remote function client for Supabase Edge Functions.

The processing step (transcoding + persistence of the uploaded recipe) runs
server-side as an edge function. This client performs the single
request/response call and maps every transport problem to TransportError.

Architecture Pattern:
    Simple HTTP client wrapper - no retry logic (handled by the scheduler)
    Async-only interface using httpx.AsyncClient

Usage:
    from upload_pipeline.clients.functions import SupabaseFunctionsClient

    client = SupabaseFunctionsClient("https://abc.supabase.co", api_key)
    data = await client.invoke("video-processor", {"fileName": "clip.mp4", "metadata": {...}})
    await client.close()
"""

from typing import Any, Protocol

import httpx

from upload_pipeline.exceptions import TransportError
from upload_pipeline.utils.logging import get_logger

log = get_logger(__name__)


class FunctionInvoker(Protocol):
    """Remote function call consumed by the processing invoker."""

    async def invoke(self, name: str, body: dict[str, Any]) -> dict[str, Any]: ...


class SupabaseFunctionsClient:
    """FunctionInvoker implementation for Supabase Edge Functions.

    Attributes:
        base_url: Project base URL
        client: Async HTTP client for making requests
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def invoke(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST ``body`` to the named function and return its JSON response.

        Args:
            name: Function name (e.g., "video-processor").
            body: JSON-serializable request body.

        Returns:
            Decoded JSON object returned by the function.

        Raises:
            TransportError: On network errors, HTTP error statuses, or a
                response body that is not a JSON object.
        """
        url = f"{self.base_url}/functions/v1/{name}"
        headers = {"Authorization": f"Bearer {self._api_key}", "apikey": self._api_key}

        try:
            response = await self.client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Edge function error: {e}") from e

        if response.is_error:
            raise TransportError(
                f"Edge function error: HTTP {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError("Edge function returned a non-JSON response") from e

        if not isinstance(data, dict):
            raise TransportError("Edge function returned an unexpected response shape")

        log.info("edge_function_invoked", function=name, status_code=response.status_code)
        return data

    async def close(self) -> None:
        """Close HTTP client connection."""
        await self.client.aclose()
