"""Document store contract shared by the Postgres and in-memory backends."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

from docrel.errors import DocrelError
from docrel.filters import Filter
from docrel.model import SortOrder

type SortSpec = Sequence[tuple[str, SortOrder]]


class DuplicateKeyError(DocrelError):
    """An insert or update collided with a unique field (internal id, public id or code)."""

    def __init__(self, collection: str, field: str, value: Any) -> None:
        self.collection = collection
        self.field = field
        self.value = value
        super().__init__(f"Duplicate {collection}.{field}: {value!r}")


class DocumentSession(Protocol):
    """Operations available both on the store and inside a transaction."""

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        """Persist *document* (which already carries ``_id``) and return it."""
        ...

    async def find(
        self,
        collection: str,
        where: Filter,
        *,
        sort: SortSpec = (),
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents matching *where* in *sort* order."""
        ...

    async def find_one(self, collection: str, where: Filter) -> dict[str, Any] | None:
        """Return the first document matching *where*, or ``None``."""
        ...

    async def count(self, collection: str, where: Filter) -> int:
        """Count documents matching *where*."""
        ...

    async def update_one(
        self,
        collection: str,
        where: Filter,
        patch: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Merge *patch* into the first matching document and return the result.

        Top-level keys in *patch* replace the stored values. Returns ``None``
        when nothing matched.
        """
        ...

    async def increment(self, counter: str) -> int:
        """Atomically add one to *counter* (starting from 0) and return it."""
        ...


class DocumentStore(DocumentSession, Protocol):
    """A document store with transactions and unique indexes."""

    def transaction(self) -> AbstractAsyncContextManager[DocumentSession]:
        """Group operations so they commit together or not at all."""
        ...

    async def ensure_unique(self, collection: str, field: str) -> None:
        """Enforce uniqueness of top-level *field* within *collection* (idempotent)."""
        ...

    async def close(self) -> None: ...
