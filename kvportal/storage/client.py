"""
Blob Storage HTTP Client

Thin async client for the managed blob store (Vercel Blob REST API).
"""

import logging
from typing import Any

import httpx

from kvportal.core.config import settings

logger = logging.getLogger(__name__)

API_VERSION = "7"
CACHE_MAX_AGE = 31536000


class BlobClient:
    """
    Async client for put/delete against the blob API.

    Use as ``async with BlobClient() as client`` or let the upload helpers
    open one per call.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.blob_api_url).rstrip("/")
        self.token = token or settings.blob_read_write_token
        self.timeout = timeout or settings.blob_timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BlobClient":
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={
                "authorization": f"Bearer {self.token or ''}",
                "x-api-version": API_VERSION,
            },
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("BlobClient must be used as an async context manager")
        return self._client

    async def put(self, pathname: str, content: bytes, content_type: str) -> str:
        """Store ``content`` at ``pathname`` and return its public URL."""
        response = await self.client.put(
            f"{self.base_url}/{pathname}",
            content=content,
            headers={
                "x-content-type": content_type,
                "x-add-random-suffix": "0",
                "x-cache-control-max-age": str(CACHE_MAX_AGE),
            },
        )
        response.raise_for_status()
        return response.json()["url"]

    async def delete(self, urls: list[str]) -> None:
        if not urls:
            return
        response = await self.client.post(f"{self.base_url}/delete", json={"urls": urls})
        response.raise_for_status()
        logger.debug("Deleted %d blobs", len(urls))
