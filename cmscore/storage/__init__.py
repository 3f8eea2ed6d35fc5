from __future__ import annotations

from dataclasses import dataclass

from cmscore.storage.base import BulkWriteError, BulkWriteResult, Collection, UpdateOne
from cmscore.storage.memory import MemoryCollection


@dataclass(slots=True)
class ContentStore:
    contents: Collection
    languages: Collection
    versions: Collection


def memory_store() -> ContentStore:
    return ContentStore(
        contents=MemoryCollection("contents"),
        languages=MemoryCollection("content_languages"),
        versions=MemoryCollection("content_versions"),
    )


def postgres_store() -> ContentStore:
    # asyncpg is only needed for this backend
    from cmscore.storage.postgres import PostgresCollection

    return ContentStore(
        contents=PostgresCollection("contents"),
        languages=PostgresCollection("content_languages"),
        versions=PostgresCollection("content_versions"),
    )


__all__ = [
    "BulkWriteError", "BulkWriteResult", "Collection", "ContentStore",
    "MemoryCollection", "UpdateOne",
    "memory_store", "postgres_store",
]
