"""HTTP routes: webhook receiver, source upload and translation lookup."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from locale_sync.app_config import is_lang_supported
from locale_sync.translations import normalize_locale

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request):
    return request.app.state.services


@router.post("/api/lokalise-webhooks", tags=["webhooks"])
async def lokalise_webhook(request: Request, services=Depends(get_services)):
    """Receive a Lokalise webhook delivery."""
    raw_body = await request.body()
    return await services.dispatcher.handle(request.headers, raw_body)


@router.post("/api/upload-to-lokalise", tags=["upload"])
async def upload_to_lokalise(services=Depends(get_services)):
    """Push the default-language source files to Lokalise."""
    try:
        report = await services.uploader.upload()
    except Exception:
        logger.exception("Source upload failed.")
        return JSONResponse({'error': 'Upload failed'}, status_code=500)
    return report.to_dict()


@router.get("/api/i18n/languages", tags=["i18n"])
async def get_languages(services=Depends(get_services)):
    """List supported languages."""
    config = services.config
    return {'languages': list(config.supported_langs), 'default': config.default_lang}


@router.get("/api/i18n/{lang}/{namespace}", tags=["i18n"])
async def get_messages(lang: str, namespace: str, services=Depends(get_services)):
    """Serve the message map of one namespace for one language."""
    if not is_lang_supported(services.config, lang):
        raise HTTPException(status_code=404, detail=f"Language '{lang}' not supported")
    messages = await services.loader.get(normalize_locale(lang), namespace)
    return dict(messages)
