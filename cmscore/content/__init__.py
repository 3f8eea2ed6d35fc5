from cmscore.content.models import (
    EMPTY_LANGUAGE, ContentKind, ContentLanguage, ContentNode, ContentVersion, VersionStatus,
)
from cmscore.content.registry import ContentTypeDefinition, ContentTypeRegistry, PropertyDefinition, UIHint
from cmscore.content.service import ContentService

__all__ = [
    "EMPTY_LANGUAGE", "ContentKind", "ContentLanguage", "ContentNode", "ContentVersion", "VersionStatus",
    "ContentTypeDefinition", "ContentTypeRegistry", "PropertyDefinition", "UIHint",
    "ContentService",
]
