"""
Sync pipeline run for every closed translation task.

    resolve target languages -> clear staging -> download and extract bundle
    -> upsert every staged file into object storage
"""
import asyncio
import io
import logging
import os
import shutil
import zipfile
from dataclasses import dataclass, field
from typing import List, Optional

from tqdm.asyncio import tqdm

from locale_sync.errors import DownloadError, StorageError, StoragePublishError
from locale_sync.lokalise_client import LokaliseClient
from locale_sync.resource_files import relative_storage_key
from locale_sync.storage import JSON_CONTENT_TYPE, SupabaseStorage

logger = logging.getLogger(__name__)

LOCALES_SUBDIR = 'locales'


@dataclass(frozen=True)
class PublishResult:
    key: str
    success: bool
    error: Optional[str] = None


@dataclass
class SyncReport:
    task_id: int
    languages: List[str]
    results: List[PublishResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.success)


def clear_staging_folder(staging_folder: str) -> None:
    """Remove the staging tree and recreate it empty."""
    if os.path.exists(staging_folder):
        shutil.rmtree(staging_folder)
    os.makedirs(staging_folder, exist_ok=True)


def extract_bundle(archive: bytes, staging_folder: str) -> List[str]:
    """
    Extract a zip archive under the staging folder.

    Returns:
        List[str]: The extracted member names.

    Raises:
        DownloadError: If the archive is corrupt or a member would land outside the staging folder.
    """
    root = os.path.realpath(staging_folder)
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
            members = bundle.namelist()
            for member in members:
                target = os.path.realpath(os.path.join(root, member))
                if target != root and not target.startswith(root + os.sep):
                    raise DownloadError(f"Archive member '{member}' escapes the staging folder")
            bundle.extractall(root)
    except zipfile.BadZipFile as exc:
        raise DownloadError(f"Bundle is not a valid zip archive: {exc}") from exc
    return [m for m in members if not m.endswith('/')]


class ResourceDownloader:
    """Downloads the translated files of a task into the staging folder."""

    def __init__(self, lokalise: LokaliseClient, staging_folder: str):
        self.lokalise = lokalise
        self.staging_folder = staging_folder

    async def download(self, languages: List[str]) -> None:
        """
        Replace the staging folder content with the translated bundle for ``languages``.

        Raises:
            DownloadError: Export, fetch or extraction failed. The staging folder
                is left cleared, never half old and half new.
        """
        await asyncio.to_thread(clear_staging_folder, self.staging_folder)
        logger.info(f"Cleared staging folder '{self.staging_folder}'.")

        bundle_url = await self.lokalise.request_bundle(languages)
        archive = await self.lokalise.fetch_bundle(bundle_url)
        try:
            extracted = await asyncio.to_thread(extract_bundle, archive, self.staging_folder)
        except OSError as exc:
            raise DownloadError(f"Extracting bundle failed: {exc}") from exc
        logger.info(f"Extracted {len(extracted)} file(s) for {', '.join(languages)} into '{self.staging_folder}'.")


def collect_staged_files(staging_root: str, subdir: str = LOCALES_SUBDIR) -> List[str]:
    """Every regular file under ``staging_root/subdir``, sorted for stable reports."""
    base = os.path.join(staging_root, subdir) if subdir else staging_root
    staged_files = []
    for dirpath, _dirnames, filenames in os.walk(base):
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            if os.path.isfile(path) and not os.path.islink(path):
                staged_files.append(path)
    return sorted(staged_files)


class StoragePublisher:
    """Upserts staged files into object storage, one result per file."""

    def __init__(
            self,
            storage: SupabaseStorage,
            max_concurrent_uploads: int = 4,
            cache_control: str = 'max-age=3600',
            show_progress: bool = False
    ):
        self.storage = storage
        self.cache_control = cache_control
        self.show_progress = show_progress
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_uploads))

    async def _publish_file(self, file_path: str, staging_root: str) -> PublishResult:
        key = relative_storage_key(file_path, staging_root)
        async with self._semaphore:
            try:
                with open(file_path, 'rb') as staged_file:
                    data = staged_file.read()
                await self.storage.upload(
                    key, data, content_type=JSON_CONTENT_TYPE, cache_control=self.cache_control, upsert=True
                )
            except (StorageError, OSError) as exc:
                failure = StoragePublishError(key, str(exc), getattr(exc, 'status_code', None))
                logger.error(str(failure))
                return PublishResult(key=key, success=False, error=failure.reason)
        logger.info(f"Uploaded '{key}'.")
        return PublishResult(key=key, success=True)

    async def publish(self, staging_root: str, subdir: str = LOCALES_SUBDIR) -> List[PublishResult]:
        """
        Upload every staged file. A failed upload never stops the others.

        Returns:
            List[PublishResult]: One result per staged file, in path order.
        """
        staged_files = collect_staged_files(staging_root, subdir)
        if not staged_files:
            logger.warning(f"No staged files found under '{os.path.join(staging_root, subdir)}'.")
            return []

        uploads = [self._publish_file(path, staging_root) for path in staged_files]
        if self.show_progress:
            results = await tqdm.gather(*uploads, desc="Publishing", unit="file")
        else:
            results = await asyncio.gather(*uploads)
        return list(results)


class SyncPipeline:
    """
    Runs resolve, download and publish for one task.

    Runs are serialized with a lock: the staging folder is shared, and one
    run's clear step must never wipe another run's download.
    """

    def __init__(
            self,
            lokalise: LokaliseClient,
            downloader: ResourceDownloader,
            publisher: StoragePublisher
    ):
        self.lokalise = lokalise
        self.downloader = downloader
        self.publisher = publisher
        self._lock = asyncio.Lock()

    async def run(self, task_id: int) -> SyncReport:
        if self._lock.locked():
            logger.info(f"Sync for task {task_id} is waiting for the previous run to finish.")
        async with self._lock:
            languages = await self.lokalise.get_task_languages(task_id)
            report = SyncReport(task_id=task_id, languages=languages)
            if not languages:
                # An empty filter would export every language, so skip instead.
                logger.warning(f"Task {task_id} has no target languages; nothing to sync.")
                return report

            await self.downloader.download(languages)
            report.results = await self.publisher.publish(self.downloader.staging_folder)

        if report.failed:
            logger.warning(
                f"Sync for task {task_id} finished with {report.failed} failed upload(s) "
                f"and {report.succeeded} successful upload(s)."
            )
        else:
            logger.info(f"Sync for task {task_id} published {report.succeeded} file(s).")
        return report
