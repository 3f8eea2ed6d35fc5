"""
Content orchestrator: the only entry point callers talk to.

Structural changes go through ``HierarchyIndex``, draft/version bookkeeping
through ``ContentVersionStore`` and the per-language projection through
``ContentLanguageStore``. Workflows are sequences of independently committed
steps; nothing here wraps them in a transaction.
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Iterable, Optional, Sequence

from loguru import logger

from cmscore.config import settings
from cmscore.content.hierarchy import HierarchyIndex, compute_path_for_new_child
from cmscore.content.languages import (
    ContentLanguageStore,
    merge_to_content_language,
    merge_to_content_version,
)
from cmscore.content.models import (
    EMPTY_LANGUAGE,
    PAGE_FIELDS,
    ContentKind,
    ContentNode,
    ContentVersion,
    content_values,
    is_draft_version,
    to_iso,
    utc_now,
)
from cmscore.content.populate import ReferencePopulator
from cmscore.content.query import ContentQuery
from cmscore.content.registry import ContentTypeRegistry
from cmscore.content.versions import ContentVersionStore
from cmscore.errors import (
    DocumentNotFound,
    PartialBatchFailure,
    ValidationError,
    ensure_found,
    ensure_not_empty,
)
from cmscore.storage import ContentStore
from cmscore.storage.base import project

ROOT_ID = "0"
FOLDER_KINDS = (ContentKind.FOLDER_BLOCK, ContentKind.FOLDER_MEDIA)


class ContentService:
    def __init__(
        self,
        store: ContentStore,
        registry: ContentTypeRegistry,
        *,
        populate_depth: int = settings.DEFAULT_POPULATE_DEPTH,
        page_size: int = settings.DEFAULT_PAGE_SIZE,
    ):
        self.store = store
        self.registry = registry
        self.populate_depth = populate_depth
        self.page_size = page_size

        self.hierarchy = HierarchyIndex(store.contents)
        self.versions = ContentVersionStore(store.versions, store.contents)
        self.languages = ContentLanguageStore(store.languages)
        self.populator = ReferencePopulator(store.contents, self.languages, registry)
        self.query = ContentQuery(store.contents, self.languages)

    # ──────────────────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────────────────
    async def get_content(
        self,
        id: str,
        language: Optional[str] = None,
        statuses: Optional[Iterable[int]] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> dict[str, Any]:
        """Content merged with its branch in ``language``, without populating references."""
        ensure_not_empty("content_id", id)
        language = language or EMPTY_LANGUAGE
        statuses = list(statuses) if statuses is not None else None

        node = await self.hierarchy.get_node(id)
        ensure_found("Content", node, {"id": id, "is_deleted": False})

        branch = await self.languages.find_branch(id, language, statuses)
        branch_query: dict[str, Any] = {"content_id": id, "language": language}
        if statuses is not None:
            branch_query["status"] = {"$in": statuses}
        ensure_found("ContentLanguage", branch, branch_query)

        return project(merge_to_content_language(node, branch), fields)

    async def get_content_version(
        self,
        id: str,
        version_id: Optional[str],
        language: str,
        depth: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Version detail merged with its content. Without ``version_id`` the
        primary version of ``language`` is used. ``child_items`` are populated
        up to ``depth`` levels.
        """
        ensure_not_empty("content_id", id)
        ensure_not_empty("language", language)

        node = await self.hierarchy.get_node(id)
        ensure_found("Content", node, {"id": id, "is_deleted": False})

        if version_id:
            query: dict[str, Any] = {"id": version_id, "content_id": id}
            version = await self.versions.find_by_id(version_id)
            if version is not None and version.content_id != id:
                version = None
        else:
            query = {"is_primary": True, "content_id": id, "language": language}
            version = await self.versions.get_primary_version(id, language)
        ensure_found("ContentVersion", version, query)

        merged = merge_to_content_version(node, version)
        await self.populator.populate([merged], language, self._depth(depth))
        return merged

    async def get_content_children(
        self, parent_id: Optional[str], language: str, fields: Optional[Sequence[str]] = None
    ) -> list[dict[str, Any]]:
        parent_id = None if parent_id in (None, ROOT_ID) else parent_id
        children = await self.hierarchy.children_of(parent_id, contents_only=True)
        branches = await self.languages.find_branches([c.id for c in children], language)
        return [project(merge_to_content_language(c, branches.get(c.id)), fields) for c in children]

    async def get_folder_children(self, parent_id: Optional[str]) -> list[dict[str, Any]]:
        parent_id = None if parent_id in (None, ROOT_ID) else parent_id
        folders = await self.hierarchy.children_of(parent_id, folders_only=True)
        branches = await self.languages.find_branches([f.id for f in folders], EMPTY_LANGUAGE)
        return [merge_to_content_language(f, branches.get(f.id)) for f in folders]

    async def get_content_items(
        self,
        ids: Sequence[str],
        language: str,
        statuses: Optional[Iterable[int]] = None,
        fields: Optional[Sequence[str]] = None,
        deep_populate: bool = False,
        depth: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Live contents among ``ids`` in the order requested, each merged with its
        branch in ``language``. A content without a matching branch is returned
        as the bare node, as ``get_content_children`` does.
        """
        ensure_not_empty("language", language)
        statuses = list(statuses) if statuses is not None else None

        loaded = await self.populator.load_merged(ids, language, statuses, branch_required=False)
        items = [loaded[i] for i in dict.fromkeys(ids) if i in loaded]
        if deep_populate:
            await self.populator.populate(items, language, self._depth(depth), statuses)
        return [project(item, fields) for item in items]

    async def get_content_versions(self, content_id: str) -> list[dict[str, Any]]:
        ensure_not_empty("content_id", content_id)
        return [v.to_doc() for v in await self.versions.get_all_versions_of_content(content_id)]

    async def query_content(
        self,
        filter: dict[str, Any],
        page: int = 1,
        limit: Optional[int] = None,
        sort: Optional[Any] = None,
        select: Optional[Sequence[str]] = None,
    ) -> dict[str, Any]:
        limit = self.page_size if limit is None else limit
        return await self.query.query_content(filter, page, limit, sort, select)

    # ──────────────────────────────────────────────────────────────────────
    # Create
    # ──────────────────────────────────────────────────────────────────────
    async def execute_create_content_flow(
        self, content: dict[str, Any], language: str, user_id: str
    ) -> dict[str, Any]:
        """node → first version → primary → language branch; four independent commits."""
        ensure_not_empty("language", language)
        content_type = content.get("content_type")
        definition = self.registry.get(content_type)
        if definition is None:
            raise ValidationError("content_type", f"Unknown content type {content_type!r}")

        parent = await self._resolve_parent(content.get("parent_id"))
        node = await self._insert_node(
            parent, user_id, content_type=content_type, kind=definition.kind.value, master_language_id=language
        )
        try:
            version = await self.versions.create_new_version(content, node.id, user_id, language)
            version = await self.versions.set_primary_version(version.id)
            await self.languages.create_content_language(content, node.id, version.id, user_id, language)
        except Exception:
            logger.error(f"Create flow failed after inserting content {node.id}; the node has no complete version")
            raise
        await self.hierarchy.mark_has_children(parent)

        logger.info(f"Created {content_type} {node.id} ({language}) by {user_id}")
        return merge_to_content_version(node, version)

    async def execute_create_folder_flow(
        self,
        name: str,
        parent_id: Optional[str],
        user_id: str,
        kind: ContentKind = ContentKind.FOLDER_BLOCK,
    ) -> dict[str, Any]:
        ensure_not_empty("name", name)
        if ContentKind(kind) not in FOLDER_KINDS:
            raise ValidationError("kind", f"{kind!r} is not a folder kind")

        parent = await self._resolve_parent(parent_id)
        node = await self._insert_node(parent, user_id, content_type=None, kind=ContentKind(kind).value,
                                       master_language_id=EMPTY_LANGUAGE)
        branch = await self.languages.create_content_language({"name": name}, node.id, None, user_id, EMPTY_LANGUAGE)
        await self.hierarchy.mark_has_children(parent)

        logger.info(f"Created folder {node.id} '{name}' by {user_id}")
        return merge_to_content_language(node, branch)

    async def execute_create_language_flow(
        self, content_id: str, language: str, payload: dict[str, Any], user_id: str
    ) -> dict[str, Any]:
        """First draft of an existing content in another language."""
        ensure_not_empty("content_id", content_id)
        ensure_not_empty("language", language)

        node = await self.hierarchy.get_node(content_id)
        ensure_found("Content", node, {"id": content_id, "is_deleted": False})
        if node.is_folder:
            raise ValidationError("content_id", f"Folder {content_id} has no language versions")
        if await self.languages.find_branch(content_id, language) is not None:
            raise ValidationError("language", f"Content {content_id} already has a '{language}' branch")

        version = await self.versions.create_new_version(payload, content_id, user_id, language)
        version = await self.versions.set_primary_version(version.id)
        await self.languages.create_content_language(payload, content_id, version.id, user_id, language)

        logger.info(f"Added language '{language}' to {content_id} by {user_id}")
        return merge_to_content_version(node, version)

    # ──────────────────────────────────────────────────────────────────────
    # Versions
    # ──────────────────────────────────────────────────────────────────────
    async def set_primary_version(self, version_id: str) -> dict[str, Any]:
        ensure_not_empty("version_id", version_id)
        return (await self.versions.set_primary_version(version_id)).to_doc()

    async def execute_update_content_flow(
        self, id: str, version_id: str, user_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Drafts are edited in place. Published and historical versions are never
        touched: the edit forks a new draft linked through ``master_version_id``.
        """
        ensure_not_empty("content_id", id)
        version, node = await self._load_version(id, version_id)
        language = version.language

        if version.is_draft:
            branch = await self.languages.find_branch(id, language)
            ensure_found("ContentLanguage", branch, {"content_id": id, "language": language})
            # a live published projection is never overwritten by draft edits
            if is_draft_version(branch.status):
                await self.languages.update_branch(
                    branch, {**content_values(payload), "updated_by": user_id, "updated_at": to_iso(utc_now())}
                )
            saved = await self.versions.save_draft(version, payload, user_id)
            logger.info(f"Saved draft {saved.id} of {id} ({language}) by {user_id}")
            return merge_to_content_version(node, saved)

        seed = {**version.to_doc(), **content_values(payload)}
        draft = await self.versions.create_new_version(seed, id, user_id, language, master_version_id=version.id)
        if await self.versions.get_primary_draft_version(id, language) is None:
            draft = await self.versions.set_primary_version(draft.id)
        logger.info(f"Forked draft {draft.id} from {version.id} of {id} ({language}) by {user_id}")
        return merge_to_content_version(node, draft)

    async def execute_publish_content_flow(self, id: str, version_id: str, user_id: str) -> dict[str, Any]:
        ensure_not_empty("content_id", id)
        version, node = await self._load_version(id, version_id)
        language = version.language

        if not version.is_draft:
            logger.info(f"Version {version.id} of {id} is not a draft; publish skipped")
            return merge_to_content_version(node, version)

        published = await self.versions.mark_published(version, user_id)

        branch = await self.languages.find_branch(id, language)
        if branch is None:
            branch = await self.languages.create_content_language(
                published.to_doc(), id, published.id, user_id, language
            )
        previous_version_id = branch.version_id

        values: dict[str, Any] = {
            "status": published.status,
            "start_publish": to_iso(published.start_publish),
            "published_by": published.published_by,
            "name": published.name,
            "properties": published.properties,
            "child_items": published.child_items,
            "version_id": published.id,
            "updated_by": user_id,
            "updated_at": to_iso(utc_now()),
        }
        if self.registry.is_page(node.content_type):
            values.update({f: getattr(published, f) for f in PAGE_FIELDS})
        await self.languages.update_branch(branch, values)

        if previous_version_id and previous_version_id != published.id:
            await self.versions.mark_previously_published(previous_version_id)

        logger.info(f"Published {published.id} of {id} ({language}) by {user_id}")
        return merge_to_content_version(node, published)

    # ──────────────────────────────────────────────────────────────────────
    # Structure
    # ──────────────────────────────────────────────────────────────────────
    async def execute_move_content_to_trash_flow(self, id: str, user_id: str) -> dict[str, Any]:
        """Soft-delete a node and its whole subtree. Rows are never removed."""
        ensure_not_empty("content_id", id)
        node = await self.hierarchy.get_node(id)
        ensure_found("Content", node, {"id": id, "is_deleted": False})

        when = utc_now()
        # node and descendants are disjoint row sets
        results = await asyncio.gather(
            self.hierarchy.mark_deleted(node, user_id, when),
            self.hierarchy.mark_subtree_deleted(node, user_id, when),
            return_exceptions=True,
        )
        parts = (node.id, f"descendants of {node.id}")
        failures = [(part, r) for part, r in zip(parts, results) if isinstance(r, BaseException)]
        if failures:
            logger.warning(f"Move to trash of {id} partially failed: {failures}")
            raise PartialBatchFailure(
                "move_to_trash",
                failures,
                succeeded=[part for part, r in zip(parts, results) if not isinstance(r, BaseException)],
            )

        await self.hierarchy.refresh_has_children(node.parent_id, folders_only=node.is_folder)
        logger.info(f"Moved {id} and {results[1]} descendants to trash by {user_id}")
        return node.to_doc()

    async def execute_copy_content_flow(
        self, source_content_id: str, target_parent_id: Optional[str], user_id: str
    ) -> dict[str, Any]:
        """
        Duplicate the source subtree under ``target_parent_id``. Each copied
        node receives the latest version per language and the matching branch.
        """
        ensure_not_empty("source_content_id", source_content_id)
        source = await self.hierarchy.get_node(source_content_id)
        ensure_found("Content", source, {"id": source_content_id, "is_deleted": False})
        target = await self._resolve_parent(target_parent_id)

        # snapshot before writing, so copying into the own subtree terminates
        children_of: dict[str, list[ContentNode]] = defaultdict(list)
        for descendant in await self.hierarchy.descendants_of(source):
            children_of[descendant.parent_id].append(descendant)

        copied = await self._copy_node(source, target, children_of, user_id)
        await self.hierarchy.mark_has_children(target)
        try:
            await self._copy_children(source.id, copied, children_of, user_id)
        except PartialBatchFailure as exc:
            exc.succeeded.insert(0, source.id)
            logger.warning(f"Copy of {source.id} into {target_parent_id} incomplete: {exc}")
            raise

        logger.info(f"Copied {source.id} as {copied.id} under {target_parent_id} by {user_id}")
        return copied.to_doc()

    async def execute_cut_content_flow(
        self, source_content_id: str, target_parent_id: Optional[str], user_id: str
    ) -> dict[str, Any]:
        """Move the source subtree under ``target_parent_id`` (None = root)."""
        ensure_not_empty("source_content_id", source_content_id)
        source = await self.hierarchy.get_node(source_content_id)
        ensure_found("Content", source, {"id": source_content_id, "is_deleted": False})
        target = await self._resolve_parent(target_parent_id)
        old_parent_id = source.parent_id

        moved = await self.hierarchy.reparent(source, target, user_id)
        await self.hierarchy.mark_has_children(target)
        if old_parent_id != moved.parent_id:
            await self.hierarchy.refresh_has_children(old_parent_id, folders_only=moved.is_folder)

        logger.info(f"Cut {moved.id} from {old_parent_id} to {moved.parent_id} by {user_id}")
        return moved.to_doc()

    # ──────────────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────────────
    def _depth(self, depth: Optional[int]) -> int:
        return self.populate_depth if depth is None else max(depth, 0)

    async def _resolve_parent(self, parent_id: Optional[str]) -> Optional[ContentNode]:
        if not parent_id or parent_id == ROOT_ID:
            return None
        parent = await self.hierarchy.get_node(parent_id)
        ensure_found("Content", parent, {"id": parent_id, "is_deleted": False})
        return parent

    async def _load_version(self, id: str, version_id: str) -> tuple[ContentVersion, ContentNode]:
        version, node = await self.versions.get_version_by_id(version_id)
        if version.content_id != id:
            raise DocumentNotFound("ContentVersion", {"id": version_id, "content_id": id})
        return version, node

    async def _insert_node(self, parent: Optional[ContentNode], user_id: str, **fields: Any) -> ContentNode:
        path = compute_path_for_new_child(parent)
        node = ContentNode(
            id="",
            parent_id=path.parent_id,
            parent_path=path.parent_path,
            ancestors=path.ancestors,
            created_by=user_id,
            created_at=utc_now(),
            **fields,
        )
        return await self.hierarchy.insert_node(node)

    async def _copy_node(
        self,
        source: ContentNode,
        new_parent: Optional[ContentNode],
        children_of: dict[str, list[ContentNode]],
        user_id: str,
    ) -> ContentNode:
        copied = await self._insert_node(
            new_parent,
            user_id,
            content_type=source.content_type,
            kind=source.kind,
            master_language_id=source.master_language_id,
            has_children=bool(children_of.get(source.id)),
        )

        latest = await self.versions.latest_versions_by_language(source.id)
        for language, version in latest.items():
            payload = version.to_doc()
            new_version = await self.versions.create_new_version(payload, copied.id, user_id, language)
            await self.versions.set_primary_version(new_version.id)
            await self.languages.create_content_language(payload, copied.id, new_version.id, user_id, language)

        # folder branches carry no versions
        for branch in await self.languages.branches_of(source.id):
            if branch.language not in latest:
                await self.languages.create_content_language(
                    branch.to_doc(), copied.id, None, user_id, branch.language
                )
        return copied

    async def _copy_subtree(
        self,
        source: ContentNode,
        new_parent: ContentNode,
        children_of: dict[str, list[ContentNode]],
        user_id: str,
    ) -> list[str]:
        copied = await self._copy_node(source, new_parent, children_of, user_id)
        return [source.id, *await self._copy_children(source.id, copied, children_of, user_id)]

    async def _copy_children(
        self,
        source_id: str,
        copied_parent: ContentNode,
        children_of: dict[str, list[ContentNode]],
        user_id: str,
    ) -> list[str]:
        """Copy the children of ``source_id`` concurrently; returns the source ids copied."""
        children = children_of.get(source_id) or []
        if not children:
            return []

        results = await asyncio.gather(
            *(self._copy_subtree(child, copied_parent, children_of, user_id) for child in children),
            return_exceptions=True,
        )
        failures: list[tuple[str, Any]] = []
        succeeded: list[str] = []
        for child, result in zip(children, results):
            if isinstance(result, PartialBatchFailure):
                # the child itself was copied, part of its subtree was not
                succeeded.append(child.id)
                succeeded.extend(result.succeeded)
                failures.extend(result.failures)
            elif isinstance(result, BaseException):
                failures.append((child.id, result))
            else:
                succeeded.extend(result)

        if failures:
            raise PartialBatchFailure("copy_content", failures, succeeded)
        return succeeded
