"""Object storage client for the Supabase Storage REST API.

This module provides the storage seam used by the asset uploader: upload a
byte buffer to a path inside a named bucket, build its public URL, and
download it back for verification.

Architecture Pattern:
    Simple HTTP client wrapper - no upload retry logic (handled by the scheduler)
    Async-only interface using httpx.AsyncClient
    Read-back downloads retry transient network errors (tenacity)

Dependencies:
    - httpx: Async HTTP client library
    - tenacity: Retry transient read-back failures

Usage:
    from upload_pipeline.clients.storage import SupabaseStorageClient

    client = SupabaseStorageClient("https://abc.supabase.co", api_key)
    path = await client.upload("videos", "raw-videos/clip.mp4", data, content_type="video/mp4")
    data = await client.download("videos", path)
    await client.close()

Security:
    - API key sent as bearer token, never logged
    - Uses HTTPS for secure transmission
"""

from typing import Protocol
from urllib.parse import quote

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from upload_pipeline.exceptions import StorageError
from upload_pipeline.utils.logging import get_logger

log = get_logger(__name__)


class ObjectStorage(Protocol):
    """Object storage consumed by the asset uploader."""

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
        cache_control: str | None = None,
    ) -> str: ...

    def get_public_url(self, bucket: str, path: str) -> str: ...

    async def download(self, bucket: str, path: str) -> bytes: ...


def _error_message(response: httpx.Response) -> str:
    """Extract a readable error message from a storage error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)[:200]


class SupabaseStorageClient:
    """ObjectStorage implementation for Supabase Storage.

    Attributes:
        base_url: Project base URL (e.g., "https://abc.supabase.co")
        client: Async HTTP client for making requests

    Example:
        >>> client = SupabaseStorageClient("https://abc.supabase.co", "service-key")
        >>> client.get_public_url("recipe-thumbnails", "u1/recipe-thumbnails/t.jpg")
        'https://abc.supabase.co/storage/v1/object/public/recipe-thumbnails/u1/recipe-thumbnails/t.jpg'
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            base_url: Project base URL.
            api_key: Service API key.
            timeout: Request timeout in seconds (large uploads need a long one).
            client: Optional preconfigured httpx client (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "apikey": self._api_key}

    def _object_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{quote(bucket)}/{quote(path)}"

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
        cache_control: str | None = None,
    ) -> str:
        """Upload bytes to ``bucket/path``.

        Args:
            bucket: Bucket name.
            path: Object path inside the bucket.
            data: Object contents.
            content_type: MIME type stored with the object.
            upsert: Overwrite an existing object at the same path.
            cache_control: Optional max-age in seconds for public reads.

        Returns:
            The stored object path (relative to the bucket).

        Raises:
            StorageError: If the request fails or storage returns an HTTP error
                (e.g., 409 when the path exists and upsert is False).
        """
        headers = {
            **self._headers(),
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        }
        if cache_control:
            headers["Cache-Control"] = f"max-age={cache_control}"

        try:
            response = await self.client.post(
                self._object_url(bucket, path), content=data, headers=headers
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to upload {bucket}/{path}: {e}") from e

        if response.is_error:
            raise StorageError(
                f"Failed to upload {bucket}/{path}: {_error_message(response)}",
                status_code=response.status_code,
            )

        log.info(
            "storage_upload_success",
            bucket=bucket,
            path=path,
            size_bytes=len(data),
            upsert=upsert,
        )
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        """Return the public URL of an object (no request is made)."""
        return f"{self.base_url}/storage/v1/object/public/{quote(bucket)}/{quote(path)}"

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get(self, url: str) -> httpx.Response:
        return await self.client.get(url, headers=self._headers())

    async def download(self, bucket: str, path: str) -> bytes:
        """Download an object's contents.

        Retry Strategy:
            Network-level errors (connect/read failures) are retried up to
            3 attempts with exponential backoff; HTTP error statuses are not.

        Raises:
            StorageError: If the object cannot be downloaded.
        """
        try:
            response = await self._get(self._object_url(bucket, path))
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to download {bucket}/{path}: {e}") from e

        if response.is_error:
            raise StorageError(
                f"Failed to download {bucket}/{path}: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response.content

    async def close(self) -> None:
        """Close HTTP client connection."""
        await self.client.aclose()
