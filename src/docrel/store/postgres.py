"""Document store backed by PostgreSQL JSONB.

Each document is one row of the ``documents`` table keyed by
``(collection, id)``. Filters compile to parameterised SQL over JSON paths
(``body #> $n::text[]``). Sequence counters live in ``sequence_counters``
and are incremented with a single upsert, so concurrent callers serialise
on the counter row and never observe the same value.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from docrel.filters import AllOf, AnyOf, Eq, Filter, In, Match, Range, split_path
from docrel.model import INTERNAL_ID, SortOrder
from docrel.store.base import DocumentSession, DuplicateKeyError, SortSpec
from docrel.store.schema import (
    COUNTERS_TABLE,
    DOCUMENTS_TABLE,
    SCHEMA_STATEMENTS,
    unique_index_name,
    unique_index_statement,
)

logger = logging.getLogger(__name__)


def decode_jsonb(val: Any) -> Any:
    """Decode a JSONB value returned as text by asyncpg."""
    if not isinstance(val, str):
        return val
    return json.loads(val)


def _duplicate(
    collection: str, exc: asyncpg.UniqueViolationError, values: dict[str, Any]
) -> DuplicateKeyError:
    """Map a unique violation back to the document field it guards."""
    constraint = exc.constraint_name or ""
    if constraint.endswith("_pkey"):
        return DuplicateKeyError(collection, INTERNAL_ID, values.get(INTERNAL_ID))
    for field, value in values.items():
        if unique_index_name(collection, field) == constraint:
            return DuplicateKeyError(collection, field, value)
    return DuplicateKeyError(collection, constraint, None)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _WhereCompiler:
    """Compile a filter tree to SQL, collecting positional arguments."""

    def __init__(self, args: list[Any]) -> None:
        self.args = args

    def param(self, value: Any) -> str:
        self.args.append(value)
        return f"${len(self.args)}"

    def path(self, field: str) -> str:
        return f"body #> {self.param(split_path(field))}::text[]"

    def text_path(self, field: str) -> str:
        return f"body #>> {self.param(split_path(field))}::text[]"

    def compile(self, clause: Filter) -> str:
        match clause:
            case Eq(field=field, value=None):
                path = self.path(field)
                return f"({path} IS NULL OR {path} = 'null'::jsonb)"
            case Eq(field=field, value=value):
                # jsonb containment: scalar @> scalar is equality, array @> scalar is membership
                return f"({self.path(field)} @> {self.param(json.dumps(value))}::jsonb)"
            case In(values=()):
                return "FALSE"
            case In(field=field, values=values):
                encoded = [json.dumps(v) for v in values]
                return f"({self.path(field)} @> ANY({self.param(encoded)}::jsonb[]))"
            case Match(field=field, text=text):
                pattern = f"%{_escape_like(text)}%"
                return f"({self.text_path(field)} ILIKE {self.param(pattern)})"
            case Range(field=field, gte=gte, lte=lte):
                parts = []
                for bound, op in ((gte, ">="), (lte, "<=")):
                    if bound is None:
                        continue
                    if isinstance(bound, str):
                        parts.append(
                            f'({self.text_path(field)}) COLLATE "C" {op} {self.param(bound)}'
                        )
                    else:
                        parts.append(
                            f"{self.path(field)} {op} {self.param(json.dumps(bound))}::jsonb"
                        )
                return "(" + " AND ".join(parts) + ")" if parts else "TRUE"
            case AllOf(clauses=()):
                return "TRUE"
            case AllOf(clauses=clauses):
                return "(" + " AND ".join(self.compile(c) for c in clauses) + ")"
            case AnyOf(clauses=()):
                return "FALSE"
            case AnyOf(clauses=clauses):
                return "(" + " OR ".join(self.compile(c) for c in clauses) + ")"
        raise TypeError(f"Unsupported filter clause: {clause!r}")

    def order_by(self, sort: SortSpec) -> str:
        terms = [
            f"{self.path(field)} {'ASC' if order is SortOrder.ASC else 'DESC'}"
            for field, order in sort
        ]
        terms.append("id ASC")
        return ", ".join(terms)


def compile_where(collection: str, where: Filter) -> tuple[str, list[Any], _WhereCompiler]:
    """Return ``(sql_condition, args, compiler)`` scoped to *collection*."""
    args: list[Any] = [collection]
    compiler = _WhereCompiler(args)
    condition = f"collection = $1 AND {compiler.compile(where)}"
    return condition, args, compiler


class _PostgresSession:
    """Runs document operations on a pool or a single transactional connection."""

    def __init__(self, executor: asyncpg.Pool | asyncpg.Connection) -> None:
        self._db = executor

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        try:
            await self._db.execute(
                f"INSERT INTO {DOCUMENTS_TABLE} (collection, id, body) VALUES ($1, $2, $3::jsonb)",
                collection,
                document[INTERNAL_ID],
                json.dumps(document),
            )
        except asyncpg.UniqueViolationError as exc:
            raise _duplicate(collection, exc, document) from exc
        return document

    async def find(
        self,
        collection: str,
        where: Filter,
        *,
        sort: SortSpec = (),
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        condition, args, compiler = compile_where(collection, where)
        query = f"SELECT body FROM {DOCUMENTS_TABLE} WHERE {condition}"
        query += f" ORDER BY {compiler.order_by(sort)}"
        if skip:
            query += f" OFFSET {compiler.param(skip)}"
        if limit is not None:
            query += f" LIMIT {compiler.param(limit)}"
        rows = await self._db.fetch(query, *args)
        return [decode_jsonb(row["body"]) for row in rows]

    async def find_one(self, collection: str, where: Filter) -> dict[str, Any] | None:
        found = await self.find(collection, where, limit=1)
        return found[0] if found else None

    async def count(self, collection: str, where: Filter) -> int:
        condition, args, _ = compile_where(collection, where)
        total = await self._db.fetchval(
            f"SELECT count(*) FROM {DOCUMENTS_TABLE} WHERE {condition}", *args
        )
        return int(total or 0)

    async def update_one(
        self,
        collection: str,
        where: Filter,
        patch: dict[str, Any],
    ) -> dict[str, Any] | None:
        condition, args, compiler = compile_where(collection, where)
        patch_param = compiler.param(json.dumps(patch))
        try:
            body = await self._db.fetchval(
                f"""
                WITH target AS (
                    SELECT id FROM {DOCUMENTS_TABLE}
                    WHERE {condition}
                    ORDER BY id
                    LIMIT 1
                    FOR UPDATE
                )
                UPDATE {DOCUMENTS_TABLE} AS d
                SET body = d.body || {patch_param}::jsonb
                FROM target
                WHERE d.collection = $1 AND d.id = target.id
                RETURNING d.body
                """,
                *args,
            )
        except asyncpg.UniqueViolationError as exc:
            raise _duplicate(collection, exc, patch) from exc
        return decode_jsonb(body) if body is not None else None

    async def increment(self, counter: str) -> int:
        value = await self._db.fetchval(
            f"""
            INSERT INTO {COUNTERS_TABLE} (name, value)
            VALUES ($1, 1)
            ON CONFLICT (name) DO UPDATE
                SET value = {COUNTERS_TABLE}.value + 1
            RETURNING value
            """,
            counter,
        )
        return int(value)


class PostgresDocumentStore:
    """Document store over an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool
        self._session = _PostgresSession(pool)

    async def ensure_schema(self) -> None:
        """Create the documents and counters tables if needed."""
        async with self._pool.acquire() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        logger.info("Document store schema ensured")

    async def ensure_unique(self, collection: str, field: str) -> None:
        await self._pool.execute(unique_index_statement(collection, field))
        logger.debug("Unique index ensured on %s.%s", collection, field)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DocumentSession]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield _PostgresSession(conn)

    async def close(self) -> None:
        await self._pool.close()

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        return await self._session.insert(collection, document)

    async def find(
        self,
        collection: str,
        where: Filter,
        *,
        sort: SortSpec = (),
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return await self._session.find(collection, where, sort=sort, skip=skip, limit=limit)

    async def find_one(self, collection: str, where: Filter) -> dict[str, Any] | None:
        return await self._session.find_one(collection, where)

    async def count(self, collection: str, where: Filter) -> int:
        return await self._session.count(collection, where)

    async def update_one(
        self,
        collection: str,
        where: Filter,
        patch: dict[str, Any],
    ) -> dict[str, Any] | None:
        return await self._session.update_one(collection, where, patch)

    async def increment(self, counter: str) -> int:
        return await self._session.increment(counter)
