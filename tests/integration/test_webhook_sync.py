"""
End-to-end tests for the HTTP application.

The Lokalise API, the bundle host and Supabase Storage are all served by
httpx.MockTransport handlers, so every request the service makes is visible.
"""
import json
import os

import httpx
import pytest
from aiolimiter import AsyncLimiter
from fastapi.testclient import TestClient

from locale_sync.app import Services, create_app
from locale_sync.lokalise_client import LokaliseClient
from locale_sync.storage import SupabaseStorage
from locale_sync.sync_pipeline import ResourceDownloader, StoragePublisher, SyncPipeline
from locale_sync.translations import TranslationLoader
from locale_sync.upload import SourceUploader
from locale_sync.webhook import WebhookDispatcher

TASK_CLOSED = {
    'event': 'project.task.closed',
    'project': {'id': '123.abc', 'name': 'Website'},
    'task': {'id': 42, 'title': 'Spring release'},
}


class FakeBackends:
    """Records traffic to Lokalise and storage and answers like the real services."""

    def __init__(self, bundle, failing_keys=(), objects=None):
        self.bundle = bundle
        self.failing_keys = set(failing_keys)
        self.objects = dict(objects or {})
        self.lokalise_requests = []
        self.storage_requests = []
        self.staging_snapshot = None
        self.staging_folder = None

    def lokalise(self, request):
        self.lokalise_requests.append(request)
        path = request.url.path
        if path.endswith('/tasks/42'):
            return httpx.Response(200, json={'task': {'task_id': 42, 'languages': [
                {'language_iso': 'fr'}, {'language_iso': 'es'},
            ]}})
        if path.endswith('/files/download'):
            # The staging folder must already be empty when the export is requested
            self.staging_snapshot = sorted(os.listdir(self.staging_folder))
            return httpx.Response(200, json={'bundle_url': 'https://bundles.test/export.zip'})
        if request.url.host == 'bundles.test':
            return httpx.Response(200, content=self.bundle)
        return httpx.Response(404, json={'error': {'message': 'Not Found'}})

    def storage(self, request):
        self.storage_requests.append(request)
        key = request.url.path.split('/object/i18ndemo/', 1)[1]
        if request.method == 'POST':
            if key in self.failing_keys:
                return httpx.Response(500, json={'error': 'internal'})
            self.objects[key] = request.content
            return httpx.Response(200, json={'Key': f'i18ndemo/{key}'})
        if key in self.objects:
            return httpx.Response(200, content=self.objects[key])
        return httpx.Response(400, json={'statusCode': '404', 'error': 'not_found', 'message': 'Object not found'})

    def uploaded_keys(self):
        return sorted(r.url.path.split('/object/i18ndemo/', 1)[1] for r in self.storage_requests if r.method == 'POST')


@pytest.fixture
def backends(make_bundle, app_config, write_tree):
    bundle = make_bundle({
        'locales/fr/ui.json': {'greet': 'Bonjour, {name} !'},
        'locales/fr/meta.json': {'title': 'Accueil'},
        'locales/es/ui.json': {'greet': '¡Hola, {name}!'},
    })
    fake = FakeBackends(bundle, failing_keys={'locales/fr/meta.json'})
    fake.staging_folder = app_config.staging_folder
    write_tree(app_config.staging_folder, {'locales/de/stale.json': '{"old": "value"}'})
    return fake


@pytest.fixture
def client(app_config, backends):
    lokalise = LokaliseClient(
        app_config.lokalise_api_key,
        app_config.lokalise_project_id,
        client=httpx.AsyncClient(transport=httpx.MockTransport(backends.lokalise)),
        rate_limiter=AsyncLimiter(max_rate=1000, time_period=1),
    )
    storage = SupabaseStorage(
        app_config.supabase_url,
        app_config.supabase_key,
        app_config.storage_bucket,
        client=httpx.AsyncClient(transport=httpx.MockTransport(backends.storage)),
    )
    pipeline = SyncPipeline(
        lokalise,
        ResourceDownloader(lokalise, app_config.staging_folder),
        StoragePublisher(storage, max_concurrent_uploads=app_config.max_concurrent_uploads),
    )
    services = Services(
        config=app_config,
        lokalise=lokalise,
        storage=storage,
        loader=TranslationLoader(storage),
        pipeline=pipeline,
        dispatcher=WebhookDispatcher(app_config, pipeline),
        uploader=SourceUploader(lokalise, app_config.source_locales_folder, app_config.default_lang),
    )
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def test_task_closed_syncs_translations_to_storage(client, backends, app_config):
    response = client.post('/api/lokalise-webhooks', json=TASK_CLOSED, headers={'x-secret': 's3cret'})

    assert response.status_code == 200
    assert response.json() == {'status': 'task processed'}

    download_request = next(r for r in backends.lokalise_requests if r.url.path.endswith('/files/download'))
    assert json.loads(download_request.content)['filter_langs'] == ['fr', 'es']
    assert backends.staging_snapshot == []

    # One upload per staged file, keyed by its path under the staging root; the
    # failed upload is isolated and the stale German file never reaches storage.
    assert backends.uploaded_keys() == ['locales/es/ui.json', 'locales/fr/meta.json', 'locales/fr/ui.json']
    assert sorted(backends.objects) == ['locales/es/ui.json', 'locales/fr/ui.json']
    assert not os.path.exists(os.path.join(app_config.staging_folder, 'locales', 'de'))


def test_wrong_secret_makes_no_backend_calls(client, backends):
    response = client.post('/api/lokalise-webhooks', json=TASK_CLOSED, headers={'x-secret': 'nope'})

    assert response.status_code == 403
    assert response.json() == {'error': 'Forbidden'}
    assert backends.lokalise_requests == []
    assert backends.storage_requests == []


def test_ping_and_malformed_bodies(client, backends):
    headers = {'x-secret': 's3cret'}
    assert client.post('/api/lokalise-webhooks', json=['ping'], headers=headers).json() == {'status': 'success'}

    bad = client.post('/api/lokalise-webhooks', content=b'{oops', headers=headers)
    assert bad.status_code == 400 and bad.json() == {'error': 'Invalid JSON'}

    foreign = dict(TASK_CLOSED, project={'id': '999.zzz', 'name': 'Other'})
    unhandled = client.post('/api/lokalise-webhooks', json=foreign, headers=headers)
    assert unhandled.status_code == 400 and unhandled.json() == {'error': 'Unhandled payload'}
    assert backends.lokalise_requests == []


def test_unknown_task_returns_generic_failure(client, backends):
    payload = dict(TASK_CLOSED, task={'id': 7, 'title': 'Gone'})
    response = client.post('/api/lokalise-webhooks', json=payload, headers={'x-secret': 's3cret'})

    assert response.status_code == 500
    assert response.json() == {'error': 'Processing failed'}
    assert backends.storage_requests == []


def test_published_messages_are_served_after_sync(client, backends):
    client.post('/api/lokalise-webhooks', json=TASK_CLOSED, headers={'x-secret': 's3cret'})

    assert client.get('/api/i18n/fr/ui').json() == {'greet': 'Bonjour, {name} !'}
    assert client.get('/api/i18n/fr/meta').json() == {}
    assert client.get('/api/i18n/de/ui').status_code == 404
    assert client.get('/api/i18n/languages').json() == {'languages': ['en', 'fr', 'es'], 'default': 'en'}
