"""
FastAPI application factory for the localization sync service.

    uvicorn locale_sync.app:create_app --factory --port 5000
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from locale_sync.app_config import AppConfig, load_app_config
from locale_sync.lokalise_client import LokaliseClient
from locale_sync.storage import SupabaseStorage
from locale_sync.sync_pipeline import ResourceDownloader, StoragePublisher, SyncPipeline
from locale_sync.translations import TranslationLoader
from locale_sync.upload import SourceUploader
from locale_sync.webhook import WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes need, owned by one application instance."""
    config: AppConfig
    lokalise: LokaliseClient
    storage: SupabaseStorage
    loader: TranslationLoader
    pipeline: SyncPipeline
    dispatcher: WebhookDispatcher
    uploader: SourceUploader


def build_services(config: AppConfig, show_progress: bool = False) -> Services:
    """Wire the API clients, the loader and the sync pipeline from configuration."""
    lokalise = LokaliseClient(
        config.lokalise_api_key, config.lokalise_project_id, timeout=config.http_timeout_seconds
    )
    storage = SupabaseStorage(
        config.supabase_url, config.supabase_key, config.storage_bucket, timeout=config.http_timeout_seconds
    )
    pipeline = SyncPipeline(
        lokalise,
        ResourceDownloader(lokalise, config.staging_folder),
        StoragePublisher(
            storage,
            max_concurrent_uploads=config.max_concurrent_uploads,
            cache_control=config.cache_control,
            show_progress=show_progress
        )
    )
    uploader = SourceUploader(
        lokalise,
        config.source_locales_folder,
        config.default_lang,
        tag_prefix=config.upload_tag_prefix,
        poll_interval=config.upload_poll_interval_seconds,
        poll_timeout=config.upload_poll_timeout_seconds
    )
    return Services(
        config=config,
        lokalise=lokalise,
        storage=storage,
        loader=TranslationLoader(storage),
        pipeline=pipeline,
        dispatcher=WebhookDispatcher(config, pipeline),
        uploader=uploader,
    )


async def close_services(services: Services) -> None:
    await services.lokalise.aclose()
    await services.storage.aclose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: close the HTTP clients on shutdown."""
    yield
    await close_services(app.state.services)


def create_app(config: Optional[AppConfig] = None, services: Optional[Services] = None) -> FastAPI:
    """FastAPI application factory."""
    if services is None:
        services = build_services(config or load_app_config())

    app = FastAPI(
        title="Locale Sync",
        description="Lokalise webhook receiver and translation loader",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )
    app.state.services = services

    from locale_sync.routes import router
    app.include_router(router)

    logger.info("Application created for Lokalise project %s.", services.config.lokalise_project_id)
    return app
