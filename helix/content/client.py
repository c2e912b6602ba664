"""
Content API client.

Fetches stitch content and the content manifest over HTTP, retrying timeouts,
connection errors and 5xx responses with exponential backoff.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from config import get_settings
from helix.content.schemas import ContentManifest, StitchContent


class ContentClient:
    """HTTP client for the content API."""

    def __init__(
        self,
        api_url: str | None = None,
        timeout_ms: int | None = None,
        retry_attempts: int | None = None,
        backoff_base: float = 1.0,
    ):
        """
        Initialize content client.

        Args:
            api_url: Base URL for the content API (settings if None)
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts per request
            backoff_base: First retry delay in seconds, doubled per attempt
        """
        settings = get_settings()
        self.api_url = (api_url or settings.content_api_url).rstrip("/")
        self.timeout_seconds = (timeout_ms or settings.content_timeout_ms) / 1000.0
        self.retry_attempts = max(1, retry_attempts or settings.content_retry_attempts)
        self.backoff_base = backoff_base
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request with retry logic.

        Raises:
            httpx.HTTPError: On 4xx responses or after all attempts fail
        """
        url = f"{self.api_url}{path}"
        last_error: httpx.HTTPError | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await getattr(self.client, method)(url, **kwargs)
                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    logger.error("Content API client error {} for {}", e.response.status_code, path)
                    raise
                last_error = e
                logger.warning(
                    "Content API server error {} on attempt {}/{}",
                    e.response.status_code,
                    attempt + 1,
                    self.retry_attempts,
                )

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning("Content API timeout on attempt {}/{}", attempt + 1, self.retry_attempts)

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Content API request error on attempt {}/{}: {}", attempt + 1, self.retry_attempts, e
                )

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.backoff_base * 2**attempt)

        logger.error("Content request {} {} failed after {} attempts: {}", method.upper(), path, self.retry_attempts, last_error)
        if last_error is None:
            raise httpx.RequestError(f"Content request {method.upper()} {path} was never attempted")
        raise last_error

    async def fetch_manifest(self) -> ContentManifest:
        """
        Fetch the per-tube thread/stitch manifest.

        Raises:
            httpx.HTTPError: On API communication failure
        """
        response = await self._send("get", "/api/content/manifest")
        data = response.json()
        return ContentManifest.model_validate(data.get("manifest", data))

    async def fetch_batch(self, stitch_ids: list[str]) -> dict[str, StitchContent]:
        """
        Fetch several stitches in one request.

        Stitches the API does not know are simply absent from the result.

        Raises:
            httpx.HTTPError: On API communication failure
        """
        if not stitch_ids:
            return {}

        response = await self._send("post", "/api/content/batch", json={"stitchIds": stitch_ids})
        data = response.json()
        stitches = [StitchContent.model_validate(item) for item in data.get("stitches", [])]
        logger.debug("Fetched {}/{} stitches from content API", len(stitches), len(stitch_ids))
        return {stitch.id: stitch for stitch in stitches}

    async def fetch_stitch(self, stitch_id: str) -> StitchContent | None:
        """
        Fetch a single stitch, or None if the API does not know it.

        Raises:
            httpx.HTTPError: On API communication failure other than 404
        """
        try:
            response = await self._send("get", f"/api/content/stitch/{stitch_id}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        data = response.json()
        return StitchContent.model_validate(data.get("stitch", data))
