from __future__ import annotations

import copy
from typing import Any, Optional, Sequence
from uuid import uuid4

from cmscore.storage.base import (
    BulkWriteError,
    BulkWriteResult,
    Filter,
    Sort,
    UpdateOne,
    join_document,
    normalize_condition,
    project,
    sort_documents,
)


def _matches_condition(value: Any, cond: dict[str, Any]) -> bool:
    for op, arg in cond.items():
        if op == "$eq" and value != arg:
            return False
        if op == "$ne" and value == arg:
            return False
        if op == "$in" and value not in list(arg):
            return False
        if op == "$prefix" and not (isinstance(value, str) and value.startswith(arg)):
            return False
    return True


def matches(doc: dict, filter: Filter) -> bool:
    return all(
        _matches_condition(doc.get(field), normalize_condition(cond))
        for field, cond in filter.items()
    )


class MemoryCollection:
    """In-process collection. Every read and write deep-copies documents."""

    def __init__(self, name: str):
        self.name = name
        self._docs: dict[str, dict] = {}

    def __len__(self) -> int:
        return len(self._docs)

    async def find_one(self, filter: Filter, *, sort: Optional[Sort] = None) -> Optional[dict]:
        found = await self.find(filter, sort=sort, limit=1)
        return found[0] if found else None

    async def find(
        self,
        filter: Filter,
        *,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> list[dict]:
        docs = [copy.deepcopy(d) for d in self._docs.values() if matches(d, filter)]
        docs = sort_documents(docs, sort)
        end = None if limit is None else skip + limit
        return [project(d, fields) for d in docs[skip:end]]

    async def find_joined(
        self,
        filter: Filter,
        joined: "MemoryCollection",
        *,
        foreign_key: str,
        joined_filter: Optional[Filter] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> tuple[list[dict], int]:
        docs = [d for d in self._docs.values() if matches(d, filter)]
        ids = {d["id"] for d in docs}
        by_key: dict[str, dict] = {}
        for other in joined._docs.values():
            if other.get(foreign_key) in ids and matches(other, joined_filter or {}):
                by_key.setdefault(other[foreign_key], other)

        rows = [
            copy.deepcopy(join_document(d, by_key[d["id"]], foreign_key))
            for d in docs
            if d["id"] in by_key
        ]
        rows = sort_documents(rows, sort)
        end = None if limit is None else skip + limit
        return [project(r, fields) for r in rows[skip:end]], len(rows)

    async def count(self, filter: Filter) -> int:
        return sum(1 for d in self._docs.values() if matches(d, filter))

    async def insert_one(self, doc: dict) -> dict:
        stored = copy.deepcopy(doc)
        stored["id"] = stored.get("id") or uuid4().hex
        if stored["id"] in self._docs:
            raise ValueError(f"Duplicate id {stored['id']} in collection {self.name}")
        self._docs[stored["id"]] = stored
        return copy.deepcopy(stored)

    async def update_one(self, filter: Filter, values: dict[str, Any]) -> int:
        for doc in self._docs.values():
            if matches(doc, filter):
                doc.update(copy.deepcopy(values))
                return 1
        return 0

    async def update_many(self, filter: Filter, values: dict[str, Any]) -> int:
        updated = 0
        for doc in self._docs.values():
            if matches(doc, filter):
                doc.update(copy.deepcopy(values))
                updated += 1
        return updated

    async def bulk_update(self, ops: Sequence[UpdateOne]) -> BulkWriteResult:
        result = BulkWriteResult()
        for index, op in enumerate(ops):
            try:
                matched = await self.update_one(op.filter, op.values)
            except Exception as exc:  # noqa: BLE001 - reported per operation
                result.errors.append(BulkWriteError(index, op.filter, str(exc)))
                continue
            if matched:
                result.matched_count += matched
            else:
                result.errors.append(BulkWriteError(index, op.filter, "no document matched"))
        return result
