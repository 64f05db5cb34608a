"""In-process document store.

Implements the same contract as the Postgres backend for local development
and the unit test suite. Every operation yields to the event loop once
before touching state, so concurrent callers interleave the way they would
against a real server. Transactions keep an undo log and replay it in
reverse when the block raises.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from docrel.filters import Filter, is_missing, lookup, matches
from docrel.model import INTERNAL_ID, SortOrder
from docrel.store.base import DocumentSession, DuplicateKeyError, SortSpec

logger = logging.getLogger(__name__)

# Same cross-type ordering as jsonb: null < string < number < boolean < array < object.
_TYPE_RANK: dict[type, int] = {type(None): 0, str: 1, int: 2, float: 2, bool: 3, list: 4, dict: 5}


def _sort_key(value: Any) -> tuple[int, Any]:
    # A missing field sorts like SQL NULL: after everything else.
    if is_missing(value):
        return (9, 0)
    rank = _TYPE_RANK.get(type(value), 6)
    if rank in (0, 4, 5, 6):
        return (rank, repr(value))
    return (rank, value)


def _sorted(documents: list[dict[str, Any]], sort: SortSpec) -> list[dict[str, Any]]:
    ordered = list(documents)
    # Stable multi-key sort: apply the least significant key first.
    for field, order in reversed(list(sort)):
        ordered.sort(
            key=lambda doc, f=field: _sort_key(lookup(doc, f)),
            reverse=order is SortOrder.DESC,
        )
    return ordered


class _MemorySession:
    """Operations against a :class:`MemoryDocumentStore`, optionally journaled."""

    def __init__(self, store: MemoryDocumentStore, undo: list[Callable[[], None]] | None) -> None:
        self._store = store
        self._undo = undo

    def _journal(self, action: Callable[[], None]) -> None:
        if self._undo is not None:
            self._undo.append(action)

    def _check_unique(
        self, collection: str, fields: dict[str, Any], *, exclude: str | None = None
    ) -> None:
        docs = self._store._collections[collection]
        for field in self._store._unique[collection]:
            value = fields.get(field)
            if value is None:
                continue
            for doc_id, existing in docs.items():
                if doc_id != exclude and existing.get(field) == value:
                    raise DuplicateKeyError(collection, field, value)

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        docs = self._store._collections[collection]
        doc_id = document[INTERNAL_ID]
        if doc_id in docs:
            raise DuplicateKeyError(collection, INTERNAL_ID, doc_id)
        self._check_unique(collection, document)
        docs[doc_id] = copy.deepcopy(document)
        self._journal(lambda: docs.pop(doc_id, None))
        return copy.deepcopy(document)

    async def find(
        self,
        collection: str,
        where: Filter,
        *,
        sort: SortSpec = (),
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        hits = [d for d in self._store._collections[collection].values() if matches(where, d)]
        hits = _sorted(hits, sort)
        end = None if limit is None else skip + limit
        return [copy.deepcopy(d) for d in hits[skip:end]]

    async def find_one(self, collection: str, where: Filter) -> dict[str, Any] | None:
        found = await self.find(collection, where, limit=1)
        return found[0] if found else None

    async def count(self, collection: str, where: Filter) -> int:
        await asyncio.sleep(0)
        return sum(1 for d in self._store._collections[collection].values() if matches(where, d))

    async def update_one(
        self,
        collection: str,
        where: Filter,
        patch: dict[str, Any],
    ) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        docs = self._store._collections[collection]
        for doc_id, doc in docs.items():
            if matches(where, doc):
                self._check_unique(collection, patch, exclude=doc_id)
                previous = copy.deepcopy(doc)
                doc.update(copy.deepcopy(patch))
                self._journal(lambda i=doc_id, p=previous: docs.__setitem__(i, p))
                return copy.deepcopy(doc)
        return None

    async def increment(self, counter: str) -> int:
        counters = self._store._counters
        async with self._store._counter_lock:
            current = counters.get(counter, 0)
            await asyncio.sleep(0)
            issued = current + 1
            counters[counter] = issued

        def _release() -> None:
            # Only hand the value back if nobody has been issued a later one.
            if counters.get(counter) == issued:
                counters[counter] = issued - 1

        self._journal(_release)
        return issued


class MemoryDocumentStore:
    """Document store kept in process memory."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._counters: dict[str, int] = {}
        self._unique: dict[str, set[str]] = defaultdict(set)
        self._counter_lock = asyncio.Lock()
        self._session = _MemorySession(self, undo=None)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DocumentSession]:
        undo: list[Callable[[], None]] = []
        try:
            yield _MemorySession(self, undo=undo)
        except BaseException:
            for action in reversed(undo):
                action()
            logger.debug("Rolled back memory transaction (%d operations)", len(undo))
            raise

    async def ensure_unique(self, collection: str, field: str) -> None:
        self._unique[collection].add(field)

    async def close(self) -> None:
        return None

    def counter_value(self, counter: str) -> int:
        """Last value issued for *counter* (0 when never used)."""
        return self._counters.get(counter, 0)

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
