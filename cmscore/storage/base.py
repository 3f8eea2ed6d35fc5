"""
Generic document-store contract used by every content component.

Documents are plain JSON-compatible dicts keyed by ``id``.

Filter syntax (top-level fields only):
    {"field": value}                   equality (None matches null)
    {"field": {"$eq": value}}
    {"field": {"$ne": value}}
    {"field": {"$in": [v1, v2]}}
    {"field": {"$prefix": ",a,b,"}}    string prefix, used for subtree queries

Updates are shallow merges of ``values`` into the stored document.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

Filter = dict[str, Any]
Sort = Sequence[tuple[str, int]]

OPERATORS = ("$eq", "$ne", "$in", "$prefix")


@dataclass(slots=True)
class UpdateOne:
    filter: Filter
    values: dict[str, Any]


@dataclass(slots=True)
class BulkWriteError:
    index: int
    filter: Filter
    reason: str


@dataclass(slots=True)
class BulkWriteResult:
    matched_count: int = 0
    errors: list[BulkWriteError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Collection(Protocol):
    name: str

    async def find_one(self, filter: Filter, *, sort: Optional[Sort] = None) -> Optional[dict]:
        ...

    async def find(
        self,
        filter: Filter,
        *,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> list[dict]:
        ...

    async def find_joined(
        self,
        filter: Filter,
        joined: "Collection",
        *,
        foreign_key: str,
        joined_filter: Optional[Filter] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> tuple[list[dict], int]:
        """
        Inner join with the ``joined`` documents whose ``foreign_key`` equals
        this document's id (see ``join_document``). Sorting, skip and limit
        apply to the joined rows; returns the page and the total row count.
        """
        ...

    async def count(self, filter: Filter) -> int:
        ...

    async def insert_one(self, doc: dict) -> dict:
        ...

    async def update_one(self, filter: Filter, values: dict[str, Any]) -> int:
        ...

    async def update_many(self, filter: Filter, values: dict[str, Any]) -> int:
        ...

    async def bulk_update(self, ops: Sequence[UpdateOne]) -> BulkWriteResult:
        """Apply independent updates, unordered. One failure never aborts the rest."""
        ...


def normalize_condition(cond: Any) -> dict[str, Any]:
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        unknown = [k for k in cond if k not in OPERATORS]
        if unknown:
            raise ValueError(f"Unsupported filter operator(s): {unknown}")
        return cond
    return {"$eq": cond}


def project(doc: dict, fields: Optional[Sequence[str]]) -> dict:
    if not fields:
        return doc
    keep = set(fields) | {"id"}
    return {k: v for k, v in doc.items() if k in keep}


def join_document(doc: dict, joined: dict, foreign_key: str) -> dict:
    """``joined`` minus its own id and ``foreign_key``, overlaid by ``doc``."""
    merged = {k: v for k, v in joined.items() if k not in ("id", foreign_key)}
    merged.update(doc)
    return merged


def _sort_key(field: str):
    def key(doc: dict):
        value = doc.get(field)
        return (0, "") if value is None else (1, value)

    return key


def sort_documents(docs: list[dict], sort: Optional[Sort]) -> list[dict]:
    # stable sorts applied from the least significant key
    for field, direction in reversed(list(sort or [])):
        docs.sort(key=_sort_key(field), reverse=direction < 0)
    return docs
