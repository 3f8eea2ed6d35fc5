"""
Content-version store.

State machine:
    CHECKED_OUT ──publish──▶ PUBLISHED ──superseded──▶ PREVIOUSLY_PUBLISHED
    REJECTED is a draft state as well and may be edited or published again.

New versions always start CHECKED_OUT with ``is_primary = False``.
"""
from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from cmscore.content.models import (
    DRAFT_STATUSES,
    ContentNode,
    ContentVersion,
    VersionStatus,
    content_values,
    is_draft_version,
    to_iso,
    utc_now,
)
from cmscore.errors import DocumentNotFound, ValidationError, ensure_found, ensure_not_empty
from cmscore.storage.base import Collection


class ContentVersionStore:
    def __init__(self, versions: Collection, contents: Collection):
        self.versions = versions
        self.contents = contents

    async def create_new_version(
        self,
        payload: dict[str, Any],
        content_id: str,
        user_id: str,
        language: str,
        master_version_id: Optional[str] = None,
    ) -> ContentVersion:
        ensure_not_empty("content_id", content_id)
        ensure_not_empty("language", language)
        now = utc_now()
        version = ContentVersion(
            id="",
            content_id=content_id,
            language=language,
            **content_values(payload),
            status=VersionStatus.CHECKED_OUT,
            is_primary=False,
            master_version_id=master_version_id,
            created_by=user_id,
            created_at=now,
            saved_at=now,
            saved_by=user_id,
        )
        doc = version.to_doc()
        doc.pop("id")
        return ContentVersion.from_doc(await self.versions.insert_one(doc))

    async def find_by_id(self, version_id: str) -> Optional[ContentVersion]:
        doc = await self.versions.find_one({"id": version_id})
        return ContentVersion.from_doc(doc) if doc else None

    async def set_primary_version(self, version_id: str) -> ContentVersion:
        """
        Make ``version_id`` the only primary version of its (content, language).
        Two steps, no transaction: concurrent callers may both end up primary.
        """
        version = await self.find_by_id(version_id)
        if version is None:
            raise DocumentNotFound("ContentVersion", {"id": version_id},
                                   f"The version with id {version_id} is not found")

        cleared = await self.versions.update_many(
            {"content_id": version.content_id, "language": version.language,
             "is_primary": True, "id": {"$ne": version.id}},
            {"is_primary": False},
        )
        await self.versions.update_one({"id": version.id}, {"is_primary": True})
        version.is_primary = True
        logger.debug(f"Version {version.id} is primary for {version.content_id}/{version.language} "
                     f"({cleared} cleared)")
        return version

    async def get_version_by_id(self, version_id: str) -> tuple[ContentVersion, ContentNode]:
        """Version plus its owning content; the content must not be deleted."""
        ensure_not_empty("version_id", version_id)
        version = await self.find_by_id(version_id)
        ensure_found("ContentVersion", version, {"id": version_id})

        node_query = {"id": version.content_id, "is_deleted": False}
        node_doc = await self.contents.find_one(node_query)
        ensure_found("Content", node_doc, node_query)

        if not version.language:
            raise DocumentNotFound("ContentVersion", {"id": version_id, "language": {"$ne": ""}},
                                   f"The version {version_id} has no language")
        return version, ContentNode.from_doc(node_doc)

    async def get_primary_draft_version(self, content_id: str, language: str) -> Optional[ContentVersion]:
        doc = await self.versions.find_one({
            "content_id": content_id,
            "language": language,
            "is_primary": True,
            "status": {"$in": [int(s) for s in DRAFT_STATUSES]},
        })
        return ContentVersion.from_doc(doc) if doc else None

    async def get_primary_version(self, content_id: str, language: str) -> Optional[ContentVersion]:
        doc = await self.versions.find_one({"content_id": content_id, "language": language, "is_primary": True})
        return ContentVersion.from_doc(doc) if doc else None

    async def get_all_versions_of_content(self, content_id: str) -> list[ContentVersion]:
        docs = await self.versions.find({"content_id": content_id}, sort=[("saved_at", -1)])
        return [ContentVersion.from_doc(d) for d in docs]

    async def latest_versions_by_language(self, content_id: str) -> dict[str, ContentVersion]:
        """Most recently created version per language."""
        latest: dict[str, ContentVersion] = {}
        docs = await self.versions.find({"content_id": content_id}, sort=[("created_at", 1)])
        for doc in docs:
            version = ContentVersion.from_doc(doc)
            latest[version.language] = version
        return latest

    async def save_draft(self, version: ContentVersion, payload: dict[str, Any], user_id: str) -> ContentVersion:
        if not version.is_draft:
            raise ValidationError("status", f"Version {version.id} is not a draft and cannot be edited")
        now = utc_now()
        values = {**content_values(payload), "saved_at": to_iso(now), "saved_by": user_id, "updated_by": user_id}
        await self.versions.update_one({"id": version.id}, values)
        updated = ContentVersion.from_doc({**version.to_doc(), **values})
        return updated

    async def mark_published(self, version: ContentVersion, user_id: str) -> ContentVersion:
        if not is_draft_version(version.status):
            raise ValidationError("status", f"Only a draft version can be published, got {version.status}")
        now = utc_now()
        values = {
            "status": int(VersionStatus.PUBLISHED),
            "start_publish": to_iso(now),
            "published_by": user_id,
            "saved_at": to_iso(now),
            "saved_by": user_id,
            "master_version_id": None,
        }
        await self.versions.update_one({"id": version.id}, values)
        return ContentVersion.from_doc({**version.to_doc(), **values})

    async def mark_previously_published(self, version_id: str) -> int:
        return await self.versions.update_one(
            {"id": version_id}, {"status": int(VersionStatus.PREVIOUSLY_PUBLISHED)}
        )
