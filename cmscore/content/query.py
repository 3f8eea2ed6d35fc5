"""
Paginated listing: nodes joined to their branch in one language.

Default order is branch name ascending, then node creation time
descending; the id is the final tiebreaker so pages never overlap.
"""
from __future__ import annotations

import math
from typing import Any, Optional, Sequence

from cmscore.content.languages import ContentLanguageStore
from cmscore.errors import ValidationError, ensure_not_empty
from cmscore.storage.base import Collection

DEFAULT_SORT: tuple[tuple[str, int], ...] = (("name", 1), ("created_at", -1))

# Filter keys applied to the node; everything else is ignored.
NODE_FILTER_KEYS = ("is_deleted", "parent_id", "content_type", "deleted_by")


def build_node_filter(filter: dict[str, Any]) -> dict[str, Any]:
    query: dict[str, Any] = {k: filter[k] for k in NODE_FILTER_KEYS if k in filter}
    parent_path = filter.get("parent_path")
    if parent_path:
        query["parent_path"] = {"$prefix": parent_path}
    return query


def normalize_sort(sort: Optional[Any]) -> list[tuple[str, int]]:
    """Accept ``[(field, 1|-1)]`` or ``{field: "asc"|"desc"|1|-1}``."""
    if not sort:
        return list(DEFAULT_SORT)
    items = sort.items() if isinstance(sort, dict) else sort
    normalized = []
    for field, direction in items:
        if isinstance(direction, str):
            direction = -1 if direction.lower() in ("desc", "descending", "-1") else 1
        normalized.append((field, -1 if direction < 0 else 1))
    return normalized


class ContentQuery:
    def __init__(self, contents: Collection, languages: ContentLanguageStore):
        self.contents = contents
        self.languages = languages

    async def query_content(
        self,
        filter: dict[str, Any],
        page: int,
        limit: int,
        sort: Optional[Any] = None,
        select: Optional[Sequence[str]] = None,
    ) -> dict[str, Any]:
        language = filter.get("language")
        ensure_not_empty("language", language)
        if page < 1:
            raise ValidationError("page", "page must be >= 1")
        if limit < 1:
            raise ValidationError("limit", "limit must be >= 1")

        # the join, sort and page run in the store
        docs, total = await self.contents.find_joined(
            build_node_filter(filter),
            self.languages.languages,
            foreign_key="content_id",
            joined_filter={"language": language},
            sort=[*normalize_sort(sort), ("id", 1)],
            skip=(page - 1) * limit,
            limit=limit,
            fields=select,
        )
        if total == 0:
            return {"docs": [], "total": 0, "pages": 0}
        return {"docs": docs, "total": total, "pages": math.ceil(total / limit)}
