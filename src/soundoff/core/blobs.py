"""Fetch encoded audio payloads from the blob store over HTTP."""

from __future__ import annotations

import logging

import httpx

from soundoff.config import Settings
from soundoff.core.errors import BlobFetchError

logger = logging.getLogger(__name__)


class HttpBlobFetcher:
    """GETs ``{base_url}/{bucket}/{prefix}/{soundcron_id}`` into memory."""

    def __init__(
        self,
        base_url: str,
        bucket: str,
        prefix: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket.strip("/")
        self.prefix = prefix.strip("/")
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpBlobFetcher:
        return cls(settings.blob_base_url, settings.blob_bucket, settings.blob_prefix)

    def url_for(self, soundcron_id: str) -> str:
        parts = [self.base_url, self.bucket]
        if self.prefix:
            parts.append(self.prefix)
        parts.append(soundcron_id)
        return "/".join(parts)

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        try:
            return await client.get(url)
        except httpx.HTTPError as exc:
            raise BlobFetchError(f"error fetching {url}: {exc}") from exc

    async def fetch(self, soundcron_id: str) -> bytes:
        url = self.url_for(soundcron_id)
        if self._client is not None:
            response = await self._get(self._client, url)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await self._get(client, url)

        if response.status_code != httpx.codes.OK:
            raise BlobFetchError(
                f"error response from blob store for {soundcron_id}: {response.status_code}"
            )
        logger.debug("Fetched %d bytes for soundcron %s", len(response.content), soundcron_id)
        return response.content
