"""
Populate a small demo site so local dev isn't empty.
Run once: `python -m scripts.seed_demo` (honours STORAGE_BACKEND).
"""
import asyncio

from cmscore.bootstrap import build_content_service
from cmscore.content import (
    ContentKind, ContentTypeDefinition, ContentTypeRegistry, PropertyDefinition, UIHint,
)

DEMO_USER = "seed"

demo_registry = ContentTypeRegistry([
    ContentTypeDefinition(
        "StandardPage",
        ContentKind.PAGE,
        properties=(
            PropertyDefinition("heading"),
            PropertyDefinition("main_content_area", UIHint.CONTENT_AREA, allowed_types=("TeaserBlock",)),
        ),
    ),
    ContentTypeDefinition(
        "TeaserBlock",
        ContentKind.BLOCK,
        properties=(PropertyDefinition("text", UIHint.TEXTAREA),),
    ),
])


async def main() -> None:
    service = await build_content_service(demo_registry)

    folder = await service.execute_create_folder_flow("Teasers", None, DEMO_USER)
    teaser = await service.execute_create_content_flow(
        {"content_type": "TeaserBlock", "parent_id": folder["id"], "name": "Welcome teaser",
         "properties": {"text": "Hello from the demo"}},
        "en",
        DEMO_USER,
    )
    home = await service.execute_create_content_flow(
        {"content_type": "StandardPage", "name": "Home", "url_segment": "home", "visible_in_menu": True,
         "properties": {"heading": "Welcome", "main_content_area": [{"id": teaser["id"]}]},
         "child_items": [{"content": teaser["id"]}]},
        "en",
        DEMO_USER,
    )
    await service.execute_publish_content_flow(teaser["id"], teaser["version_id"], DEMO_USER)
    await service.execute_publish_content_flow(home["id"], home["version_id"], DEMO_USER)

    print(f"✅ Demo content inserted (home page {home['id']})")


if __name__ == "__main__":
    asyncio.run(main())
