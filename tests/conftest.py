import pytest

from cmscore.content import (
    ContentKind, ContentService, ContentTypeDefinition, ContentTypeRegistry, PropertyDefinition, UIHint,
)
from cmscore.storage import memory_store

PAGE_TYPE = "StandardPage"
BLOCK_TYPE = "TeaserBlock"
USER = "editor"


@pytest.fixture
def registry() -> ContentTypeRegistry:
    return ContentTypeRegistry([
        ContentTypeDefinition(
            PAGE_TYPE,
            ContentKind.PAGE,
            properties=(
                PropertyDefinition("heading"),
                PropertyDefinition("main_content_area", UIHint.CONTENT_AREA, allowed_types=(BLOCK_TYPE,)),
            ),
        ),
        ContentTypeDefinition(BLOCK_TYPE, ContentKind.BLOCK, properties=(PropertyDefinition("text"),)),
    ])


@pytest.fixture
def store():
    return memory_store()


@pytest.fixture
def service(store, registry) -> ContentService:
    return ContentService(store, registry, populate_depth=5, page_size=20)


@pytest.fixture
def make_page(service):
    async def _make(name: str, parent_id: str | None = None, language: str = "en", **fields) -> dict:
        payload = {"content_type": PAGE_TYPE, "name": name, "parent_id": parent_id, **fields}
        return await service.execute_create_content_flow(payload, language, USER)

    return _make


@pytest.fixture
def make_block(service):
    async def _make(name: str, parent_id: str | None = None, language: str = "en", **fields) -> dict:
        payload = {"content_type": BLOCK_TYPE, "name": name, "parent_id": parent_id, **fields}
        return await service.execute_create_content_flow(payload, language, USER)

    return _make
