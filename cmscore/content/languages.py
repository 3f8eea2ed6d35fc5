from __future__ import annotations

from typing import Any, Iterable, Optional

from cmscore.content.models import (
    ContentLanguage,
    ContentNode,
    ContentVersion,
    VersionStatus,
    content_values,
    to_iso,
    utc_now,
)
from cmscore.errors import ensure_not_empty
from cmscore.storage.base import Collection

# Keys of a branch/version that never leak into a merged result.
_OWNERSHIP_KEYS = ("id", "content_id")


def merge_to_content_language(node: ContentNode, branch: Optional[ContentLanguage]) -> dict[str, Any]:
    """
    Overlay a node onto its language branch. Structural node fields always
    win on key collisions; the branch supplies the language-specific surface.
    """
    merged = branch.to_doc() if branch is not None else {}
    for key in _OWNERSHIP_KEYS:
        merged.pop(key, None)
    merged.update(node.to_doc())
    return merged


def merge_to_content_version(node: ContentNode, version: Optional[ContentVersion]) -> dict[str, Any]:
    merged = version.to_doc() if version is not None else {}
    for key in _OWNERSHIP_KEYS:
        merged.pop(key, None)
    merged.update(node.to_doc())
    merged["version_id"] = version.id if version is not None else None
    return merged


class ContentLanguageStore:
    def __init__(self, languages: Collection):
        self.languages = languages

    async def create_content_language(
        self,
        payload: dict[str, Any],
        content_id: str,
        version_id: Optional[str],
        user_id: str,
        language: str,
    ) -> ContentLanguage:
        """Upsert the (content, language) projection from a version payload."""
        ensure_not_empty("content_id", content_id)
        existing = await self.find_branch(content_id, language)
        now = utc_now()
        if existing is not None:
            values = {
                **content_values(payload),
                "version_id": version_id,
                "status": int(VersionStatus.CHECKED_OUT),
                "updated_by": user_id,
                "updated_at": to_iso(now),
            }
            return await self.update_branch(existing, values)

        branch = ContentLanguage(
            id="",
            content_id=content_id,
            language=language,
            **content_values(payload),
            status=VersionStatus.CHECKED_OUT,
            version_id=version_id,
            created_by=user_id,
            created_at=now,
        )
        doc = branch.to_doc()
        doc.pop("id")
        return ContentLanguage.from_doc(await self.languages.insert_one(doc))

    async def find_branch(
        self, content_id: str, language: str, statuses: Optional[Iterable[int]] = None
    ) -> Optional[ContentLanguage]:
        query: dict[str, Any] = {"content_id": content_id, "language": language}
        if statuses is not None:
            query["status"] = {"$in": [int(s) for s in statuses]}
        doc = await self.languages.find_one(query)
        return ContentLanguage.from_doc(doc) if doc else None

    async def find_branches(
        self, content_ids: Iterable[str], language: str, statuses: Optional[Iterable[int]] = None
    ) -> dict[str, ContentLanguage]:
        ids = list(dict.fromkeys(content_ids))
        if not ids:
            return {}
        query: dict[str, Any] = {"content_id": {"$in": ids}, "language": language}
        if statuses is not None:
            query["status"] = {"$in": [int(s) for s in statuses]}
        docs = await self.languages.find(query)
        return {d["content_id"]: ContentLanguage.from_doc(d) for d in docs}

    async def branches_of(self, content_id: str) -> list[ContentLanguage]:
        docs = await self.languages.find({"content_id": content_id}, sort=[("language", 1)])
        return [ContentLanguage.from_doc(d) for d in docs]

    async def update_branch(self, branch: ContentLanguage, values: dict[str, Any]) -> ContentLanguage:
        await self.languages.update_one({"id": branch.id}, values)
        return ContentLanguage.from_doc({**branch.to_doc(), **values})
