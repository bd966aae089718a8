"""
Async client for the Lokalise API v2.

Covers the calls made by the sync pipeline (task details, bundle export) and
by the source-file uploader (file upload, process status).
"""
import asyncio
import logging
import random
from typing import Any, Dict, List, Optional

import httpx
from aiolimiter import AsyncLimiter

from locale_sync.errors import DownloadError, PlatformError

logger = logging.getLogger(__name__)

LOKALISE_API_BASE = 'https://api.lokalise.com/api2'

# Lokalise allows 6 requests per second per token
RATE_LIMIT_REQUESTS = 6
RATE_LIMIT_PERIOD = 1

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def _retry_delay(attempt: int, base_delay: float, response: Optional[httpx.Response] = None) -> float:
    """
    Compute how long to wait before the next attempt.

    A Retry-After header (seconds or milliseconds) wins; otherwise exponential
    backoff with jitter.
    """
    if response is not None:
        retry_after_header = response.headers.get('Retry-After', '')
        if retry_after_header.isdigit():
            return float(retry_after_header)
        if retry_after_header.endswith('ms') and retry_after_header[:-2].isdigit():
            return float(retry_after_header[:-2]) / 1000
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, 1)


class LokaliseClient:
    """Lokalise API client scoped to a single project."""

    def __init__(
            self,
            api_key: str,
            project_id: str,
            timeout: float = 30.0,
            client: Optional[httpx.AsyncClient] = None,
            max_retries: int = 3,
            base_delay: float = 1.0,
            rate_limiter: Optional[AsyncLimiter] = None
    ):
        self.project_id = project_id
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._headers = {
            'X-Api-Token': api_key,
            'Accept': 'application/json',
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = rate_limiter or AsyncLimiter(max_rate=RATE_LIMIT_REQUESTS, time_period=RATE_LIMIT_PERIOD)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _project_url(self, path: str) -> str:
        return f"{LOKALISE_API_BASE}/projects/{self.project_id}/{path.lstrip('/')}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send one API request with rate limiting and retries.

        Transport errors and 429/5xx answers are retried up to ``max_retries``
        attempts. Anything else that is not a 2xx raises PlatformError.
        """
        attempt = 0
        while True:
            attempt += 1
            response = None
            try:
                async with self._rate_limiter:
                    response = await self._client.request(method, url, headers=self._headers, **kwargs)
            except httpx.HTTPError as exc:
                if attempt >= self.max_retries:
                    raise PlatformError(f"{method} {url} failed after {attempt} attempts: {exc}") from exc
                logger.warning(f"Request {method} {url} failed ({exc}), retrying (Attempt {attempt}/{self.max_retries})")
            else:
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise PlatformError(f"{method} {url} returned a non-JSON body") from exc
                if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= self.max_retries:
                    raise PlatformError(
                        f"{method} {url} failed with status {response.status_code}: {response.text[:200]}",
                        response.status_code
                    )

            delay = _retry_delay(attempt, self.base_delay, response)
            logger.info(f"Retrying {method} {url} in {delay:.2f} seconds (Attempt {attempt}/{self.max_retries})")
            await asyncio.sleep(delay)

    async def get_task_languages(self, task_id: int) -> List[str]:
        """
        Resolve the target language codes of a task.

        Raises:
            PlatformError: The call failed, the task does not exist or the answer is malformed.
        """
        data = await self._request('GET', self._project_url(f'tasks/{task_id}'))
        task = data.get('task')
        if not isinstance(task, dict):
            raise PlatformError(f"Task {task_id} not found in project {self.project_id}")

        languages = []
        for entry in task.get('languages') or []:
            code = entry.get('language_iso') if isinstance(entry, dict) else None
            if code:
                languages.append(code)
        logger.info(f"Task {task_id} targets languages: {', '.join(languages) or '(none)'}")
        return languages

    async def request_bundle(self, languages: List[str]) -> str:
        """
        Ask for a JSON export of translated segments and return the bundle URL.

        Raises:
            DownloadError: The export could not be prepared.
        """
        body = {
            'format': 'json',
            'original_filenames': True,
            'filter_data': ['translated'],
            'filter_langs': list(languages),
            'indentation': '2sp',
            'directory_prefix': '',
        }
        try:
            data = await self._request('POST', self._project_url('files/download'), json=body)
        except PlatformError as exc:
            raise DownloadError(f"Export request failed: {exc}", exc.status_code) from exc

        bundle_url = data.get('bundle_url')
        if not bundle_url:
            raise DownloadError("Export response did not contain a bundle_url")
        return bundle_url

    async def fetch_bundle(self, bundle_url: str) -> bytes:
        """Download the exported zip archive."""
        try:
            response = await self._client.get(bundle_url)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Fetching bundle failed: {exc}") from exc
        if not response.is_success:
            raise DownloadError(f"Fetching bundle failed with status {response.status_code}", response.status_code)
        return response.content

    async def upload_file(
            self,
            data_b64: str,
            filename: str,
            lang_iso: str,
            replace_modified: bool = True,
            tags: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Queue one file for import. Returns the process object."""
        body = {
            'data': data_b64,
            'filename': filename,
            'lang_iso': lang_iso,
            'replace_modified': replace_modified,
            'tags': list(tags or []),
        }
        data = await self._request('POST', self._project_url('files/upload'), json=body)
        process = data.get('process')
        if not isinstance(process, dict):
            raise PlatformError(f"Upload of '{filename}' returned no process")
        return process

    async def get_process(self, process_id: str) -> Dict[str, Any]:
        data = await self._request('GET', self._project_url(f'processes/{process_id}'))
        process = data.get('process')
        if not isinstance(process, dict):
            raise PlatformError(f"Process {process_id} not found")
        return process
