from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional

EMPTY_LANGUAGE = ""

# Fields a caller may edit; copied between versions and language branches.
CONTENT_FIELDS = ("name", "properties", "child_items", "url_segment", "simple_address", "visible_in_menu")
PAGE_FIELDS = ("url_segment", "simple_address", "visible_in_menu")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value is not None else None


def from_iso(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class VersionStatus(IntEnum):
    NOT_CREATED = 0
    CHECKED_OUT = 1
    CHECKED_IN = 2
    REJECTED = 3
    PUBLISHED = 4
    PREVIOUSLY_PUBLISHED = 5
    DELAYED_PUBLISH = 6
    AWAITING_APPROVAL = 7


DRAFT_STATUSES = frozenset({VersionStatus.CHECKED_OUT, VersionStatus.REJECTED})


def is_draft_version(status: Optional[int]) -> bool:
    return status in DRAFT_STATUSES


class ContentKind(str, Enum):
    PAGE = "page"
    PAGE_PARTIAL = "page_partial"
    BLOCK = "block"
    MEDIA = "media"
    FOLDER_BLOCK = "folder_block"
    FOLDER_MEDIA = "folder_media"


class _Document:
    """Round-trips a dataclass through the JSON-compatible dict stored in a collection."""

    __slots__ = ()
    _datetime_fields: tuple[str, ...] = ()

    def to_doc(self) -> dict[str, Any]:
        doc = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name in self._datetime_fields:
                value = to_iso(value)
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (list, dict)):
                value = _copy_json(value)
            doc[f.name] = value
        return doc

    @classmethod
    def from_doc(cls, doc: dict[str, Any]):
        names = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in doc.items() if k in names}
        for name in cls._datetime_fields:
            if name in values:
                values[name] = from_iso(values[name])
        return cls(**values)


def _copy_json(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _copy_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_json(v) for v in value]
    return value


@dataclass(slots=True)
class ContentNode(_Document):
    """Structural shell of one content item, independent of language."""

    id: str
    parent_id: Optional[str] = None
    parent_path: Optional[str] = None
    ancestors: list[str] = field(default_factory=list)
    content_type: Optional[str] = None
    kind: Optional[str] = None
    has_children: bool = False
    is_deleted: bool = False
    deleted_by: Optional[str] = None
    deleted_at: Optional[datetime] = None
    master_language_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    _datetime_fields = ("deleted_at", "created_at", "updated_at")

    @property
    def is_folder(self) -> bool:
        return self.content_type is None


@dataclass(slots=True)
class ContentLanguage(_Document):
    """Per-language live/working projection of a content node."""

    id: str
    content_id: str
    language: str
    name: Optional[str] = None
    status: int = VersionStatus.CHECKED_OUT
    version_id: Optional[str] = None
    start_publish: Optional[datetime] = None
    published_by: Optional[str] = None
    url_segment: Optional[str] = None
    simple_address: Optional[str] = None
    visible_in_menu: Optional[bool] = None
    properties: dict[str, Any] = field(default_factory=dict)
    child_items: list[dict[str, Any]] = field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    _datetime_fields = ("start_publish", "created_at", "updated_at")


@dataclass(slots=True)
class ContentVersion(_Document):
    """One save/edit event within a (content, language) timeline."""

    id: str
    content_id: str
    language: str
    name: Optional[str] = None
    properties: dict[str, Any] = field(default_factory=dict)
    child_items: list[dict[str, Any]] = field(default_factory=list)
    url_segment: Optional[str] = None
    simple_address: Optional[str] = None
    visible_in_menu: Optional[bool] = None
    status: int = VersionStatus.CHECKED_OUT
    is_primary: bool = False
    master_version_id: Optional[str] = None
    start_publish: Optional[datetime] = None
    published_by: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    saved_at: Optional[datetime] = None
    saved_by: Optional[str] = None
    updated_by: Optional[str] = None

    _datetime_fields = ("start_publish", "created_at", "saved_at")

    @property
    def is_draft(self) -> bool:
        return is_draft_version(self.status)


def content_values(payload: dict[str, Any]) -> dict[str, Any]:
    """Editable content fields present in ``payload``, deep-copied."""
    return {k: _copy_json(payload[k]) for k in CONTENT_FIELDS if k in payload}

