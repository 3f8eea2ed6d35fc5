"""
Hierarchy index: parent / ancestors / materialized path for every node.

A node's ``parent_path`` is ``",<ancestor-1>,<ancestor-2>,...,"`` (root-level
nodes carry ``None``). The subtree below node N is every node whose path
starts with ``(N.parent_path or ",") + N.id + ","``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger

from cmscore.content.models import ContentNode, to_iso, utc_now
from cmscore.errors import PartialBatchFailure, ValidationError
from cmscore.storage.base import Collection, UpdateOne

PATH_SENTINEL = ","


@dataclass(frozen=True, slots=True)
class NodePath:
    parent_id: Optional[str]
    parent_path: Optional[str]
    ancestors: list[str]

    def as_values(self) -> dict:
        return {
            "parent_id": self.parent_id,
            "parent_path": self.parent_path,
            "ancestors": list(self.ancestors),
        }


def path_from_ancestors(ancestors: list[str]) -> Optional[str]:
    if not ancestors:
        return None
    return PATH_SENTINEL + PATH_SENTINEL.join(ancestors) + PATH_SENTINEL


def subtree_prefix(node: ContentNode) -> str:
    return (node.parent_path or PATH_SENTINEL) + node.id + PATH_SENTINEL


def compute_path_for_new_child(parent: Optional[ContentNode]) -> NodePath:
    if parent is None:
        return NodePath(parent_id=None, parent_path=None, ancestors=[])
    ancestors = [*parent.ancestors, parent.id]
    return NodePath(parent_id=parent.id, parent_path=path_from_ancestors(ancestors), ancestors=ancestors)


def rebase_descendant(descendant: ContentNode, moved: ContentNode, moved_to: NodePath) -> NodePath:
    """
    Re-anchor ``descendant`` after ``moved`` (its ancestor, pre-move state)
    was re-parented to ``moved_to``. The chain from ``moved`` downwards is kept.
    """
    anchor = len(moved.ancestors)
    if descendant.ancestors[anchor:anchor + 1] != [moved.id]:
        raise ValueError(f"Node {descendant.id} is not below {moved.id}")
    ancestors = [*moved_to.ancestors, *descendant.ancestors[anchor:]]
    return NodePath(
        parent_id=descendant.parent_id,
        parent_path=path_from_ancestors(ancestors),
        ancestors=ancestors,
    )


def is_in_subtree(candidate: ContentNode, root: ContentNode) -> bool:
    return candidate.id == root.id or root.id in candidate.ancestors


class HierarchyIndex:
    def __init__(self, contents: Collection):
        self.contents = contents

    async def get_node(self, node_id: Optional[str], *, include_deleted: bool = False) -> Optional[ContentNode]:
        if not node_id:
            return None
        query: dict = {"id": node_id}
        if not include_deleted:
            query["is_deleted"] = False
        doc = await self.contents.find_one(query)
        return ContentNode.from_doc(doc) if doc else None

    async def insert_node(self, node: ContentNode) -> ContentNode:
        return ContentNode.from_doc(await self.contents.insert_one(node.to_doc()))

    async def descendants_of(self, node: ContentNode, *, include_deleted: bool = False) -> list[ContentNode]:
        query: dict = {"parent_path": {"$prefix": subtree_prefix(node)}}
        if not include_deleted:
            query["is_deleted"] = False
        docs = await self.contents.find(query, sort=[("parent_path", 1), ("created_at", 1)])
        return [ContentNode.from_doc(d) for d in docs]

    async def children_of(self, parent_id: Optional[str], *, folders_only: bool = False,
                          contents_only: bool = False) -> list[ContentNode]:
        query: dict = {"parent_id": parent_id, "is_deleted": False}
        if folders_only:
            query["content_type"] = None
        elif contents_only:
            query["content_type"] = {"$ne": None}
        docs = await self.contents.find(query, sort=[("created_at", 1)])
        return [ContentNode.from_doc(d) for d in docs]

    async def count_children(self, parent_id: Optional[str], *, folders_only: bool = False) -> int:
        query: dict = {"parent_id": parent_id, "is_deleted": False}
        if folders_only:
            query["content_type"] = None
        return await self.contents.count(query)

    async def mark_has_children(self, parent: Optional[ContentNode]) -> None:
        if parent is None or parent.has_children:
            return
        await self.contents.update_one({"id": parent.id}, {"has_children": True})
        parent.has_children = True

    async def refresh_has_children(self, parent_id: Optional[str], *, folders_only: bool = False) -> int:
        """Clear ``has_children`` on the parent once it has no live children left."""
        if parent_id is None:
            return 0
        remaining = await self.count_children(parent_id, folders_only=folders_only)
        if remaining == 0:
            await self.contents.update_one({"id": parent_id}, {"has_children": False})
        return remaining

    async def mark_deleted(self, node: ContentNode, user_id: str, when: datetime) -> ContentNode:
        values = {"is_deleted": True, "deleted_by": user_id, "deleted_at": to_iso(when)}
        await self.contents.update_one({"id": node.id}, values)
        node.is_deleted, node.deleted_by, node.deleted_at = True, user_id, when
        return node

    async def mark_subtree_deleted(self, node: ContentNode, user_id: str, when: datetime) -> int:
        """Stamp every descendant, including ones already in the trash."""
        values = {"is_deleted": True, "deleted_by": user_id, "deleted_at": to_iso(when)}
        updated = await self.contents.update_many(
            {"parent_path": {"$prefix": subtree_prefix(node)}}, values
        )
        logger.debug(f"Soft-deleted {updated} descendants of {node.id}")
        return updated

    async def reparent(self, node: ContentNode, new_parent: Optional[ContentNode], user_id: str) -> ContentNode:
        """
        Move ``node`` under ``new_parent`` (None = root) and rewrite the path of
        every descendant. Descendants are snapshotted before any write and
        updated in one unordered batch.
        """
        if new_parent is not None and is_in_subtree(new_parent, node):
            raise ValidationError(
                "target_parent_id",
                f"Cannot move {node.id} below itself or its descendant {new_parent.id}",
            )

        descendants = await self.descendants_of(node, include_deleted=True)
        moved_to = compute_path_for_new_child(new_parent)
        now = utc_now()
        stamp = {"updated_by": user_id, "updated_at": to_iso(now)}

        await self.contents.update_one({"id": node.id}, {**moved_to.as_values(), **stamp})

        ops = [
            UpdateOne({"id": d.id}, {**rebase_descendant(d, node, moved_to).as_values(), **stamp})
            for d in descendants
        ]
        if ops:
            try:
                result = await self.contents.bulk_update(ops)
            except Exception as exc:
                logger.warning(f"Path rewrite below {node.id} aborted: {exc}")
                raise PartialBatchFailure(
                    "reparent_descendants", [(d.id, exc) for d in descendants]
                ) from exc
            if not result.ok:
                failed = [(descendants[e.index].id, e.reason) for e in result.errors]
                failed_ids = {key for key, _ in failed}
                logger.warning(f"Path rewrite below {node.id} left {len(failed)} descendants on the old prefix")
                raise PartialBatchFailure(
                    "reparent_descendants",
                    failed,
                    succeeded=[d.id for d in descendants if d.id not in failed_ids],
                )
            logger.debug(f"Rewrote paths of {result.matched_count} descendants of {node.id}")

        node.parent_id, node.parent_path, node.ancestors = moved_to.parent_id, moved_to.parent_path, moved_to.ancestors
        node.updated_by, node.updated_at = user_id, now
        return node
