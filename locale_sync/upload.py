"""
Push source-language message files to Lokalise.

Files are collected from ``<source_locales_folder>/<default_lang>``. The
language of each file is its parent directory name and the filename sent to
Lokalise is its path relative to the folder that contains ``locales``, for
example ``locales/en/ui.json``.
"""
import asyncio
import base64
import datetime
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from locale_sync.errors import PlatformError
from locale_sync.lokalise_client import LokaliseClient
from locale_sync.resource_files import relative_storage_key

logger = logging.getLogger(__name__)

TERMINAL_PROCESS_STATUSES = {'finished', 'failed', 'cancelled'}


@dataclass
class UploadReport:
    tag: str
    processes: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'tag': self.tag, 'processes': self.processes, 'errors': self.errors}


def collect_files(input_dirs: Iterable[str], extensions: Tuple[str, ...] = ('.json',), recursive: bool = True) -> List[str]:
    """Collect files with one of ``extensions`` under every input dir."""
    collected = []
    for input_dir in input_dirs:
        if not os.path.isdir(input_dir):
            logger.warning(f"Input folder '{input_dir}' does not exist. Skipping.")
            continue
        for dirpath, dirnames, filenames in os.walk(input_dir):
            for filename in filenames:
                if filename.lower().endswith(extensions):
                    collected.append(os.path.join(dirpath, filename))
            if not recursive:
                dirnames.clear()
    return sorted(collected)


def infer_language(file_path: str) -> str:
    """``.../locales/en/ui.json`` -> ``en``"""
    return os.path.basename(os.path.dirname(file_path))


def infer_filename(file_path: str, source_locales_folder: str) -> str:
    """``<root>/app/locales/en/ui.json`` -> ``locales/en/ui.json``"""
    base_dir = os.path.dirname(os.path.normpath(source_locales_folder))
    return relative_storage_key(file_path, base_dir)


def build_tag(prefix: str, today: Optional[datetime.date] = None) -> str:
    today = today or datetime.date.today()
    return f"{prefix}-{today.isoformat()}"


class SourceUploader:
    """Uploads the default-language files and waits for Lokalise to import them."""

    def __init__(
            self,
            lokalise: LokaliseClient,
            source_locales_folder: str,
            default_lang: str,
            tag_prefix: str = 'api',
            poll_interval: float = 2.0,
            poll_timeout: float = 120.0
    ):
        self.lokalise = lokalise
        self.source_locales_folder = source_locales_folder
        self.default_lang = default_lang
        self.tag_prefix = tag_prefix
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    async def _upload_one(self, file_path: str, tag: str) -> Dict[str, Any]:
        with open(file_path, 'rb') as source_file:
            data_b64 = base64.b64encode(source_file.read()).decode('ascii')
        filename = infer_filename(file_path, self.source_locales_folder)
        process = await self.lokalise.upload_file(
            data_b64,
            filename=filename,
            lang_iso=infer_language(file_path),
            replace_modified=True,
            tags=[tag]
        )
        logger.info(f"Queued upload of '{filename}' as process {process.get('process_id')}.")
        return process

    async def _wait_for_process(self, process: Dict[str, Any]) -> Dict[str, Any]:
        process_id = process.get('process_id')
        deadline = time.monotonic() + self.poll_timeout
        while process.get('status') not in TERMINAL_PROCESS_STATUSES and process_id:
            if time.monotonic() >= deadline:
                logger.warning(f"Process {process_id} still '{process.get('status')}' after {self.poll_timeout}s.")
                break
            await asyncio.sleep(self.poll_interval)
            process = await self.lokalise.get_process(process_id)
        return process

    async def upload(self, today: Optional[datetime.date] = None) -> UploadReport:
        report = UploadReport(tag=build_tag(self.tag_prefix, today))
        input_dir = os.path.join(self.source_locales_folder, self.default_lang)
        files = collect_files([input_dir])
        if not files:
            logger.warning(f"No source files found in '{input_dir}'.")
            return report

        async def upload_and_wait(file_path: str) -> Optional[Dict[str, Any]]:
            try:
                process = await self._upload_one(file_path, report.tag)
                return await self._wait_for_process(process)
            except (PlatformError, OSError) as exc:
                logger.error(f"Upload of '{file_path}' failed: {exc}")
                report.errors.append({'file': infer_filename(file_path, self.source_locales_folder), 'error': str(exc)})
                return None

        results = await asyncio.gather(*(upload_and_wait(path) for path in files))
        report.processes = [process for process in results if process is not None]
        logger.info(
            f"Uploaded {len(report.processes)} file(s) with tag '{report.tag}', {len(report.errors)} error(s)."
        )
        return report
