"""
PostgreSQL backend: one ``(id text, doc jsonb)`` table per collection.

Scalar equality and ``IN`` compare the ``doc->>field`` text projection
(the indexed expressions); other values compare as jsonb. Prefix filters
are ``LIKE`` matches on the text projection.
"""
from __future__ import annotations

import json
import re
from typing import Any, Optional, Sequence
from uuid import uuid4

import asyncpg
from loguru import logger

from cmscore.storage.base import (
    BulkWriteError,
    BulkWriteResult,
    Filter,
    Sort,
    UpdateOne,
    normalize_condition,
    project,
)
from cmscore.tools.db import execute, fetch, fetchrow, fetchval, get_conn

COLLECTION_TABLES = ("contents", "content_languages", "content_versions")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS contents (
    id  text  PRIMARY KEY,
    doc jsonb NOT NULL
);
CREATE INDEX IF NOT EXISTS contents_parent_path_idx
    ON contents ((doc->>'parent_path') text_pattern_ops);
CREATE INDEX IF NOT EXISTS contents_parent_id_idx
    ON contents ((doc->>'parent_id'));

CREATE TABLE IF NOT EXISTS content_languages (
    id  text  PRIMARY KEY,
    doc jsonb NOT NULL
);
CREATE INDEX IF NOT EXISTS content_languages_content_lang_idx
    ON content_languages ((doc->>'content_id'), (doc->>'language'));

CREATE TABLE IF NOT EXISTS content_versions (
    id  text  PRIMARY KEY,
    doc jsonb NOT NULL
);
CREATE INDEX IF NOT EXISTS content_versions_content_lang_idx
    ON content_versions ((doc->>'content_id'), (doc->>'language'));
"""

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _field(name: str) -> str:
    if not _FIELD_RE.match(name):
        raise ValueError(f"Illegal field name: {name!r}")
    return name


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _equality(doc: str, field: str, value: Any, bind, *, negate: bool) -> str:
    # text comparisons go through ->> so the (doc->>'field') expression indexes apply
    if value is None:
        return f"{doc}->>'{field}' IS {'NOT ' if negate else ''}NULL"
    if isinstance(value, str):
        left, right = f"{doc}->>'{field}'", bind(value)
    else:
        left, right = f"{doc}->'{field}'", f"{bind(json.dumps(value))}::jsonb"
    return f"{left} IS DISTINCT FROM {right}" if negate else f"{left} = {right}"


def build_where(filter: Filter, args: list[Any], alias: Optional[str] = None) -> str:
    """Render ``filter`` as a SQL predicate, appending bind values to ``args``."""
    prefix = f"{alias}." if alias else ""
    doc, id_column = f"{prefix}doc", f"{prefix}id"
    clauses: list[str] = []

    def bind(value: Any) -> str:
        args.append(value)
        return f"${len(args)}"

    for name, cond in filter.items():
        field = _field(name)
        for op, arg in normalize_condition(cond).items():
            if op in ("$eq", "$ne"):
                negate = op == "$ne"
                if field != "id":
                    clauses.append(_equality(doc, field, arg, bind, negate=negate))
                elif arg is None:
                    clauses.append("TRUE" if negate else "FALSE")
                else:
                    clauses.append(f"{id_column} {'<>' if negate else '='} {bind(arg)}")
            elif op == "$in":
                values = list(arg)
                if field == "id":
                    clauses.append(f"{id_column} = ANY({bind(values)}::text[])")
                elif values and all(isinstance(v, str) for v in values):
                    clauses.append(f"{doc}->>'{field}' = ANY({bind(values)}::text[])")
                else:
                    clauses.append(
                        f"{doc}->'{field}' IN (SELECT jsonb_array_elements({bind(json.dumps(values))}::jsonb))"
                    )
            elif op == "$prefix":
                clauses.append(f"{doc}->>'{field}' LIKE {bind(_escape_like(arg) + '%')}")

    return " AND ".join(clauses) if clauses else "TRUE"


def build_order_by(sort: Optional[Sort]) -> str:
    # None sorts before any value, as in the memory backend
    if not sort:
        return ""
    parts = []
    for name, direction in sort:
        field = _field(name)
        column = "id" if field == "id" else f"doc->'{field}'"
        parts.append(f"{column} {'DESC NULLS LAST' if direction < 0 else 'ASC NULLS FIRST'}")
    return " ORDER BY " + ", ".join(parts)


def build_join(
    table: str,
    joined_table: str,
    foreign_key: str,
    filter: Filter,
    joined_filter: Filter,
    args: list[Any],
) -> str:
    """
    Inner join of ``table`` rows with the ``joined_table`` rows pointing at
    them through ``foreign_key``. Yields ``(id, doc)`` where ``doc`` is the
    joined document overlaid by the row's own.
    """
    if joined_table not in COLLECTION_TABLES:
        raise ValueError(f"Unknown collection table: {joined_table}")
    fk = _field(foreign_key)
    where = f"{build_where(filter, args, alias='c')} AND {build_where(joined_filter, args, alias='j')}"
    return (
        f"SELECT c.id AS id, (j.doc - 'id' - '{fk}') || c.doc AS doc "
        f"FROM {table} AS c JOIN {joined_table} AS j ON j.doc->>'{fk}' = c.id "
        f"WHERE {where}"
    )


def _rowcount(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3"
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


class PostgresCollection:
    def __init__(self, table: str):
        if table not in COLLECTION_TABLES:
            raise ValueError(f"Unknown collection table: {table}")
        self.name = table

    async def find_one(self, filter: Filter, *, sort: Optional[Sort] = None) -> Optional[dict]:
        args: list[Any] = []
        where = build_where(filter, args)
        row = await fetchrow(
            f"SELECT doc FROM {self.name} WHERE {where}{build_order_by(sort)} LIMIT 1;",
            *args,
        )
        return json.loads(row["doc"]) if row else None

    async def find(
        self,
        filter: Filter,
        *,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> list[dict]:
        args: list[Any] = []
        sql = f"SELECT doc FROM {self.name} WHERE {build_where(filter, args)}{build_order_by(sort)}"
        if skip:
            args.append(skip)
            sql += f" OFFSET ${len(args)}"
        if limit is not None:
            args.append(limit)
            sql += f" LIMIT ${len(args)}"
        rows = await fetch(sql + ";", *args)
        return [project(json.loads(r["doc"]), fields) for r in rows]

    async def find_joined(
        self,
        filter: Filter,
        joined: "PostgresCollection",
        *,
        foreign_key: str,
        joined_filter: Optional[Filter] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> tuple[list[dict], int]:
        args: list[Any] = []
        joined_sql = build_join(self.name, joined.name, foreign_key, filter, joined_filter or {}, args)

        page_args = list(args)
        sql = f"SELECT doc, count(*) OVER () AS total FROM ({joined_sql}) AS joined{build_order_by(sort)}"
        if skip:
            page_args.append(skip)
            sql += f" OFFSET ${len(page_args)}"
        if limit is not None:
            page_args.append(limit)
            sql += f" LIMIT ${len(page_args)}"
        rows = await fetch(sql + ";", *page_args)

        if rows:
            total = rows[0]["total"]
        elif skip:
            # past the last page the window count has no row to ride on
            total = await fetchval(f"SELECT count(*) FROM ({joined_sql}) AS joined;", *args)
        else:
            total = 0
        return [project(json.loads(r["doc"]), fields) for r in rows], total

    async def count(self, filter: Filter) -> int:
        args: list[Any] = []
        return await fetchval(
            f"SELECT count(*) FROM {self.name} WHERE {build_where(filter, args)};", *args
        )

    async def insert_one(self, doc: dict) -> dict:
        stored = dict(doc)
        stored["id"] = stored.get("id") or uuid4().hex
        await execute(
            f"INSERT INTO {self.name} (id, doc) VALUES ($1, $2::jsonb);",
            stored["id"],
            json.dumps(stored),
        )
        return stored

    def _update_sql(self, filter: Filter, values: dict[str, Any], *, single: bool) -> tuple[str, list[Any]]:
        args: list[Any] = [json.dumps(values)]
        where = build_where(filter, args)
        if single:
            where = f"id = (SELECT id FROM {self.name} WHERE {where} LIMIT 1)"
        return f"UPDATE {self.name} SET doc = doc || $1::jsonb WHERE {where};", args

    async def update_one(self, filter: Filter, values: dict[str, Any]) -> int:
        sql, args = self._update_sql(filter, values, single=True)
        return _rowcount(await execute(sql, *args))

    async def update_many(self, filter: Filter, values: dict[str, Any]) -> int:
        sql, args = self._update_sql(filter, values, single=False)
        return _rowcount(await execute(sql, *args))

    async def bulk_update(self, ops: Sequence[UpdateOne]) -> BulkWriteResult:
        result = BulkWriteResult()
        async with get_conn() as conn:
            for index, op in enumerate(ops):
                sql, args = self._update_sql(op.filter, op.values, single=True)
                try:
                    matched = _rowcount(await conn.execute(sql, *args))
                except (asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
                    logger.warning(f"Bulk update #{index} on {self.name} failed: {exc}")
                    result.errors.append(BulkWriteError(index, op.filter, str(exc)))
                    continue
                if matched:
                    result.matched_count += matched
                else:
                    result.errors.append(BulkWriteError(index, op.filter, "no document matched"))
        return result


async def ensure_schema() -> None:
    await execute(SCHEMA_SQL)
