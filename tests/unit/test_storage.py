import json

import httpx
import pytest

from locale_sync.errors import StorageError, StorageNotFoundError


@pytest.mark.asyncio
async def test_download_returns_content(storage_factory):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=b'{"a": "b"}')

    storage = storage_factory(handler)
    assert await storage.download('locales/fr/ui.json') == b'{"a": "b"}'
    assert str(seen[0].url) == 'https://storage.test/storage/v1/object/i18ndemo/locales/fr/ui.json'
    assert seen[0].headers['apikey'] == 'anon-key'
    assert seen[0].headers['authorization'] == 'Bearer anon-key'


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(404, text='missing'),
    httpx.Response(400, json={'statusCode': '404', 'error': 'not_found', 'message': 'Object not found'}),
    httpx.Response(400, json={'error': 'Bad Request', 'message': 'The resource was not found'}),
])
async def test_not_found_is_distinguishable(storage_factory, response):
    storage = storage_factory(lambda request: response)
    with pytest.raises(StorageNotFoundError):
        await storage.download('locales/fr/ui.json')


@pytest.mark.asyncio
async def test_other_errors_are_storage_errors(storage_factory):
    storage = storage_factory(lambda request: httpx.Response(500, json={'error': 'internal'}))
    with pytest.raises(StorageError) as exc_info:
        await storage.download('locales/fr/ui.json')
    assert not isinstance(exc_info.value, StorageNotFoundError)
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_transport_errors_are_storage_errors(storage_factory):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    storage = storage_factory(handler)
    with pytest.raises(StorageError):
        await storage.download('locales/fr/ui.json')


@pytest.mark.asyncio
async def test_upload_is_an_upsert_with_json_headers(storage_factory):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={'Key': 'i18ndemo/locales/fr/ui.json'})

    storage = storage_factory(handler)
    payload = json.dumps({"save": "Enregistrer"}).encode('utf-8')
    await storage.upload('locales/fr/ui.json', payload, cache_control='max-age=60')

    request = seen[0]
    assert request.method == 'POST'
    assert request.headers['x-upsert'] == 'true'
    assert request.headers['content-type'] == 'application/json'
    assert request.headers['cache-control'] == 'max-age=60'
    assert request.content == payload


@pytest.mark.asyncio
async def test_upload_failure_raises(storage_factory):
    storage = storage_factory(lambda request: httpx.Response(403, json={'error': 'Unauthorized'}))
    with pytest.raises(StorageError):
        await storage.upload('locales/fr/ui.json', b'{}')
