"""
Async client for the Supabase Storage REST API.

Only the two calls the service needs are implemented: download one object
and upsert one object.
"""
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from locale_sync.errors import StorageError, StorageNotFoundError

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = 'application/json'


def _is_not_found(response: httpx.Response) -> bool:
    """
    Decide whether an error response means "object does not exist".

    Storage answers a missing object either with a plain 404 or with a 400 whose
    JSON body carries ``statusCode: "404"`` / ``error: "not_found"``.
    """
    if response.status_code == 404:
        return True
    try:
        body = response.json()
    except ValueError:
        return 'not found' in response.text.lower()
    if not isinstance(body, dict):
        return False
    if str(body.get('statusCode', '')) == '404':
        return True
    error = str(body.get('error', '')).lower().replace('_', ' ')
    message = str(body.get('message', '')).lower()
    return 'not found' in error or 'not found' in message


class SupabaseStorage:
    """Object storage bound to one bucket."""

    def __init__(
            self,
            url: str,
            key: str,
            bucket: str,
            timeout: float = 30.0,
            client: Optional[httpx.AsyncClient] = None
    ):
        self.bucket = bucket
        self._base_url = url.rstrip('/') + '/storage/v1'
        self._headers = {'apikey': key, 'Authorization': f'Bearer {key}'}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _object_url(self, path: str) -> str:
        return f"{self._base_url}/object/{self.bucket}/{quote(path.lstrip('/'))}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = dict(self._headers)
        headers.update(kwargs.pop('headers', {}))
        try:
            return await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageError(f"{method} {url} failed: {exc}") from exc

    async def download(self, path: str) -> bytes:
        """
        Fetch one object.

        Raises:
            StorageNotFoundError: The object does not exist.
            StorageError: Any other failure.
        """
        response = await self._send('GET', self._object_url(path))
        if response.is_success:
            return response.content
        if _is_not_found(response):
            raise StorageNotFoundError(f"Object '{path}' not found in bucket '{self.bucket}'", response.status_code)
        raise StorageError(
            f"Downloading '{path}' failed with status {response.status_code}: {response.text[:200]}",
            response.status_code
        )

    async def upload(
            self,
            path: str,
            data: bytes,
            content_type: str = JSON_CONTENT_TYPE,
            cache_control: str = 'max-age=3600',
            upsert: bool = True
    ) -> None:
        """Write one object, overwriting an existing one when ``upsert`` is set."""
        headers = {
            'Content-Type': content_type,
            'Cache-Control': cache_control,
            'x-upsert': 'true' if upsert else 'false',
        }
        response = await self._send('POST', self._object_url(path), content=data, headers=headers)
        if not response.is_success:
            raise StorageError(
                f"Uploading '{path}' failed with status {response.status_code}: {response.text[:200]}",
                response.status_code
            )
        logger.debug("Uploaded '%s' (%d bytes)", path, len(data))
