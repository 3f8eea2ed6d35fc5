"""
Content type registry.

Built once at startup and handed to ``ContentService``; nothing registers
itself implicitly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from cmscore.content.models import ContentKind


class UIHint:
    TEXT = "text"
    TEXTAREA = "textarea"
    XHTML = "xhtml"
    CHECKBOX = "checkbox"
    IMAGE = "image"
    URL = "url"
    CONTENT_AREA = "content_area"
    OBJECT_LIST = "object_list"


@dataclass(frozen=True, slots=True)
class PropertyDefinition:
    name: str
    display_type: str = UIHint.TEXT
    display_name: Optional[str] = None
    allowed_types: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContentTypeDefinition:
    name: str
    kind: ContentKind
    properties: tuple[PropertyDefinition, ...] = field(default_factory=tuple)
    display_name: Optional[str] = None

    @property
    def content_area_properties(self) -> list[str]:
        return [p.name for p in self.properties if p.display_type == UIHint.CONTENT_AREA]


class ContentTypeRegistry:
    def __init__(self, definitions: Iterable[ContentTypeDefinition] = ()):
        self._types: dict[str, ContentTypeDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: ContentTypeDefinition) -> ContentTypeDefinition:
        if definition.name in self._types:
            raise ValueError(f"Content type '{definition.name}' is already registered")
        self._types[definition.name] = definition
        return definition

    def get(self, name: Optional[str]) -> Optional[ContentTypeDefinition]:
        if name is None:
            return None
        return self._types.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __len__(self) -> int:
        return len(self._types)

    def of_kind(self, kind: ContentKind) -> list[ContentTypeDefinition]:
        return [d for d in self._types.values() if d.kind == kind]

    def is_page(self, name: Optional[str]) -> bool:
        definition = self.get(name)
        return definition is not None and definition.kind == ContentKind.PAGE

    def content_area_properties(self, name: Optional[str]) -> list[str]:
        definition = self.get(name)
        return definition.content_area_properties if definition else []
