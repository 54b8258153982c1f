"""
Graph API media download.

Fetching an attachment takes two calls with the same bearer token: the media
id endpoint returns a short-lived URL, then that URL returns the bytes.
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class MediaFetchError(Exception):
    """Media metadata or binary could not be retrieved."""
    pass


class MediaClient:
    """
    Downloads WhatsApp attachments.

    The httpx client is shared and owned by the caller; its timeout bounds
    both calls.
    """

    def __init__(self, http_client: httpx.AsyncClient, graph_base: str, access_token: str) -> None:
        self.http_client = http_client
        self.graph_base = graph_base.rstrip("/")
        self.access_token = access_token

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def fetch(self, media_id: str) -> bytes:
        """
        Resolve and download a media id.

        Raises:
            MediaFetchError: non-2xx, missing url, transport error or timeout
        """
        try:
            meta_response = await self.http_client.get(
                f"{self.graph_base}/{media_id}",
                params={"fields": "url,mime_type"},
                headers=self._headers,
            )
            if not meta_response.is_success:
                raise MediaFetchError(
                    f"Media metadata request returned {meta_response.status_code} for {media_id}"
                )

            meta = meta_response.json()
            url = meta.get("url") if isinstance(meta, dict) else None
            if not url:
                raise MediaFetchError(f"No media URL from WhatsApp for {media_id}")

            binary_response = await self.http_client.get(url, headers=self._headers)
            if not binary_response.is_success:
                raise MediaFetchError(
                    f"Media download returned {binary_response.status_code} for {media_id}"
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise MediaFetchError(f"Media request failed for {media_id}: {e}") from e
        except ValueError as e:
            raise MediaFetchError(f"Media metadata for {media_id} is not JSON: {e}") from e

        logger.debug(f"Fetched media {media_id}: {len(binary_response.content)} bytes")
        return binary_response.content
