import io
import json
import os
import zipfile

import httpx
import pytest
from aiolimiter import AsyncLimiter

from locale_sync.app_config import AppConfig
from locale_sync.lokalise_client import LokaliseClient
from locale_sync.storage import SupabaseStorage


@pytest.fixture
def app_config(tmp_path):
    """Configuration pointing every folder into the test's tmp_path."""
    return AppConfig(
        project_root=str(tmp_path),
        staging_folder=str(tmp_path / 'staging'),
        source_locales_folder=str(tmp_path / 'app' / 'locales'),
        webhook_secret='s3cret',
        lokalise_api_key='lokalise-token',
        lokalise_project_id='123.abc',
        supabase_url='https://storage.test',
        supabase_key='anon-key',
        storage_bucket='i18ndemo',
        default_lang='en',
        supported_langs=('en', 'fr', 'es'),
        max_concurrent_uploads=2,
        upload_poll_interval_seconds=0,
    )


@pytest.fixture
def make_bundle():
    """Build an in-memory zip archive from a {member name: content} dict."""
    def _make(files):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w') as bundle:
            for name, content in files.items():
                if isinstance(content, dict):
                    content = json.dumps(content, indent=2)
                bundle.writestr(name, content)
        return buffer.getvalue()
    return _make


@pytest.fixture
def lokalise_factory():
    """Build a LokaliseClient whose HTTP traffic goes to ``handler``."""
    def _make(handler, max_retries=3):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return LokaliseClient(
            'lokalise-token',
            '123.abc',
            client=client,
            max_retries=max_retries,
            base_delay=0,
            rate_limiter=AsyncLimiter(max_rate=1000, time_period=1),
        )
    return _make


@pytest.fixture
def storage_factory():
    """Build a SupabaseStorage whose HTTP traffic goes to ``handler``."""
    def _make(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return SupabaseStorage('https://storage.test', 'anon-key', 'i18ndemo', client=client)
    return _make


@pytest.fixture
def write_tree():
    """Create files under a root from a {relative path: content} dict."""
    def _write(root, files):
        for rel_path, content in files.items():
            path = os.path.join(str(root), *rel_path.split('/'))
            os.makedirs(os.path.dirname(path), exist_ok=True)
            mode = 'wb' if isinstance(content, bytes) else 'w'
            with open(path, mode) as f:
                f.write(content)
    return _write
