from typing import Optional

from cmscore.tools.logger import logger
from cmscore.config import Settings, settings as default_settings
from cmscore.content.registry import ContentTypeRegistry
from cmscore.content.service import ContentService
from cmscore.storage import ContentStore, memory_store, postgres_store


async def build_store(settings: Settings = default_settings) -> ContentStore:
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "memory":
        logger.info("Using in-memory content store")
        return memory_store()
    if backend == "postgres":
        from cmscore.storage.postgres import ensure_schema
        from cmscore.tools.db import init_pool

        await init_pool(postgres_url=settings.POSTGRES_URL)
        await ensure_schema()
        return postgres_store()
    raise ValueError(f"Unknown STORAGE_BACKEND {settings.STORAGE_BACKEND!r}")


async def build_content_service(
    registry: ContentTypeRegistry,
    settings: Settings = default_settings,
    store: Optional[ContentStore] = None,
) -> ContentService:
    store = store or await build_store(settings)
    service = ContentService(
        store,
        registry,
        populate_depth=settings.DEFAULT_POPULATE_DEPTH,
        page_size=settings.DEFAULT_PAGE_SIZE,
    )
    logger.success(f"Content service ready ({len(registry)} content types)")
    return service
