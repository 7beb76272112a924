"""HTTP client for the grouped image upload service.

The upload service copies ephemeral provider images into durable object
storage. One request carries a whole batch::

    POST {endpoint}
    {"imageUrls": [...], "prompt": "...", "batchId": "..."}

The service answers 200 when every image was stored, 206 when some were, and
an error status when none were. The body's ``data.results`` lists the stored
images (``key``, ``url``, ``publicUrl``, ``size``, ``etag``) in request order,
skipping failures; ``data.errors`` lists failures by 1-based ``index``.
"""

import logging
from typing import Any

import httpx

from .models import StoredAsset

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 206)


class UploadError(Exception):
    """The upload request failed as a whole."""

    pass


class HttpAssetUploader:
    """Upload a batch of image URLs through the upload service.

    Args:
        endpoint: URL of the upload service
        timeout: Request timeout in seconds
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def upload(
        self, image_urls: list[str], prompt: str, batch_id: str
    ) -> list[StoredAsset | None]:
        """Upload every image of a batch in one request.

        Args:
            image_urls: Ephemeral image URLs, in batch order
            prompt: Prompt the images were generated from
            batch_id: Batch identifier used to name the stored objects

        Returns:
            One entry per input URL: the stored asset, or None if that image
            failed to upload

        Raises:
            UploadError: If the service rejected the whole batch
            httpx.HTTPError: On transport failures
        """
        response = await self.client.post(
            self.endpoint,
            json={"imageUrls": image_urls, "prompt": prompt, "batchId": batch_id},
        )
        if response.status_code not in SUCCESS_STATUSES:
            raise UploadError(f"Upload failed ({response.status_code}): {response.text[:200]}")

        data = response.json().get("data") or {}
        assets = self.map_results(len(image_urls), data)
        logger.info(
            f"Uploaded {sum(a is not None for a in assets)}/{len(image_urls)} images "
            f"for batch {batch_id}"
        )
        return assets

    @staticmethod
    def map_results(count: int, data: dict[str, Any]) -> list[StoredAsset | None]:
        """Align the service's success list with the request's image order."""
        failed = {
            int(error["index"]) - 1
            for error in data.get("errors") or []
            if isinstance(error, dict) and "index" in error
        }
        stored = iter(data.get("results") or [])

        assets: list[StoredAsset | None] = []
        for index in range(count):
            if index in failed:
                assets.append(None)
                continue
            entry = next(stored, None)
            if entry is None:
                assets.append(None)
                continue
            assets.append(
                StoredAsset(
                    key=entry.get("key", ""),
                    url=entry.get("url", ""),
                    public_url=entry.get("publicUrl"),
                    size=int(entry.get("size") or 0),
                    etag=entry.get("etag", ""),
                )
            )
        return assets

    async def close(self) -> None:
        await self.client.aclose()
