"""
Reference population for ``child_items`` (content embedding other content).

Traversal is a breadth-first worklist, one storage round-trip per level,
bounded by ``depth``. A reference back to an id already on the current
lineage (a cycle through content areas) is left as the bare reference.
"""
from __future__ import annotations

import copy
from typing import Any, Iterable, Optional

from loguru import logger

from cmscore.content.languages import ContentLanguageStore, merge_to_content_language
from cmscore.content.models import ContentNode
from cmscore.content.registry import ContentTypeRegistry
from cmscore.storage.base import Collection


class ReferencePopulator:
    def __init__(self, contents: Collection, languages: ContentLanguageStore, registry: ContentTypeRegistry):
        self.contents = contents
        self.languages = languages
        self.registry = registry

    async def load_merged(
        self,
        ids: Iterable[str],
        language: str,
        statuses: Optional[Iterable[int]] = None,
        *,
        branch_required: bool = True,
    ) -> dict[str, dict[str, Any]]:
        """
        Non-deleted contents among ``ids`` merged with their branch in
        ``language``. Without ``branch_required`` a content lacking a matching
        branch comes back as the bare node.
        """
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return {}
        docs = await self.contents.find({"id": {"$in": wanted}, "is_deleted": False})
        nodes = [ContentNode.from_doc(d) for d in docs]
        branches = await self.languages.find_branches([n.id for n in nodes], language, statuses)
        return {
            n.id: merge_to_content_language(n, branches.get(n.id))
            for n in nodes
            if n.id in branches or not branch_required
        }

    async def populate(
        self,
        docs: list[dict[str, Any]],
        language: str,
        depth: int,
        statuses: Optional[Iterable[int]] = None,
    ) -> list[dict[str, Any]]:
        """
        Resolve ``child_items[].content`` in place, ``depth`` levels deep.

        ``statuses`` filters the branches at every level, so a published-only
        read never embeds a child that is still a draft.
        """
        statuses = list(statuses) if statuses is not None else None
        frontier = [(doc, frozenset({doc.get("id")})) for doc in docs]
        visited_docs = list(docs)
        level = 0

        while frontier and level < depth:
            refs = [
                (item, lineage)
                for doc, lineage in frontier
                for item in doc.get("child_items") or []
                if isinstance(item.get("content"), str)
            ]
            loaded = await self.load_merged((item["content"] for item, _ in refs), language, statuses)

            next_frontier = []
            for item, lineage in refs:
                ref = item["content"]
                if ref in lineage:
                    logger.debug(f"Reference cycle through {ref} left unresolved")
                    continue
                merged = loaded.get(ref)
                item["content"] = copy.deepcopy(merged) if merged is not None else None
                if merged is not None:
                    next_frontier.append((item["content"], lineage | {ref}))
                    visited_docs.append(item["content"])

            frontier = next_frontier
            level += 1

        # deepest first, so embedded copies already carry their own embeddings
        for doc in reversed(visited_docs):
            self.embed_content_areas(doc)
        return docs

    def embed_content_areas(self, doc: dict[str, Any]) -> dict[str, Any]:
        """
        For page types, swap content-area property entries that reference a
        populated child by id for the populated child itself.
        """
        if not self.registry.is_page(doc.get("content_type")):
            return doc
        properties = doc.get("properties") or {}
        populated = {
            item["content"]["id"]: item["content"]
            for item in doc.get("child_items") or []
            if isinstance(item.get("content"), dict)
        }
        if not populated:
            return doc

        for name in self.registry.content_area_properties(doc.get("content_type")):
            value = properties.get(name)
            if not isinstance(value, list):
                continue
            for i, entry in enumerate(value):
                ref = entry.get("id") if isinstance(entry, dict) else entry
                if isinstance(ref, str) and ref in populated:
                    value[i] = copy.deepcopy(populated[ref])
        return doc
