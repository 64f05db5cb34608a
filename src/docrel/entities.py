"""Generic create/find/count/update over typed entity records.

``EntityStore`` knows nothing about any particular entity's shape beyond
what its :class:`~docrel.model.EntityDefinition` declares: the collection,
the public id field, and the fields that must never be overwritten.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime
from typing import Any

from docrel.filters import MATCH_ALL, Filter
from docrel.identifiers import new_internal_id
from docrel.model import (
    CREATED_AT,
    CREATED_BY,
    INTERNAL_ID,
    STATUS,
    UPDATED_AT,
    UPDATED_BY,
    SortOrder,
)
from docrel.query import parse_datetime
from docrel.registry import EntityRegistry
from docrel.sequence import SequenceGenerator
from docrel.store.base import DocumentSession, DocumentStore, SortSpec

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with microsecond precision."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


def normalise_dates(value: Any, date_fields: frozenset[str] = frozenset(), path: str = "") -> Any:
    """Convert ``date``/``datetime`` values to the stored UTC text form.

    Strings under a path in *date_fields* are parsed as ISO dates too, so a
    bare ``"2026-03-01"`` compares against range bounds as midnight UTC.
    Unparseable strings are stored as given.
    """
    if isinstance(value, (date, datetime)):
        return parse_datetime(value)
    if isinstance(value, Mapping):
        return {
            k: normalise_dates(v, date_fields, f"{path}.{k}" if path else k)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [normalise_dates(item, date_fields, path) for item in value]
    if isinstance(value, str) and path in date_fields:
        return parse_datetime(value) or value
    return value


class EntityStore:
    """Entity-aware operations on top of a :class:`DocumentStore`."""

    def __init__(
        self,
        registry: EntityRegistry,
        store: DocumentStore,
        sequence: SequenceGenerator,
        *,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self._registry = registry
        self._store = store
        self._sequence = sequence
        self._clock = clock

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def registry(self) -> EntityRegistry:
        return self._registry

    def _target(self, session: DocumentSession | None) -> DocumentSession:
        return session if session is not None else self._store

    async def create(
        self,
        entity_type: str,
        fields: Mapping[str, Any],
        *,
        actor_id: int | None = None,
    ) -> dict[str, Any]:
        """Persist a new record with a fresh internal id and sequence number.

        The sequence increment and the insert share one transaction: a failed
        increment inserts nothing, and a failed insert hands the number back.
        ``Status`` defaults to ``True`` unless the caller set it.
        """
        definition = self._registry.get(entity_type)
        document = normalise_dates(
            {k: v for k, v in fields.items() if k not in definition.immutable_fields},
            definition.date_fields,
        )
        document.pop(UPDATED_BY, None)
        now = self._clock()
        document.setdefault(STATUS, True)
        document[CREATED_BY] = actor_id
        document[UPDATED_BY] = None
        document[CREATED_AT] = now
        document[UPDATED_AT] = now

        async with self._store.transaction() as tx:
            document[definition.id_field] = await self._sequence.next(entity_type, session=tx)
            document[INTERNAL_ID] = new_internal_id()
            await tx.insert(definition.collection, document)

        logger.info(
            "Created %s %s=%s (_id=%s)",
            entity_type,
            definition.id_field,
            document[definition.id_field],
            document[INTERNAL_ID],
        )
        return document

    async def find(
        self,
        entity_type: str,
        where: Filter = MATCH_ALL,
        *,
        sort: SortSpec = (),
        skip: int = 0,
        limit: int | None = None,
        session: DocumentSession | None = None,
    ) -> list[dict[str, Any]]:
        definition = self._registry.get(entity_type)
        return await self._target(session).find(
            definition.collection, where, sort=sort, skip=skip, limit=limit
        )

    async def find_one(
        self,
        entity_type: str,
        where: Filter,
        *,
        session: DocumentSession | None = None,
    ) -> dict[str, Any] | None:
        definition = self._registry.get(entity_type)
        return await self._target(session).find_one(definition.collection, where)

    async def count(
        self,
        entity_type: str,
        where: Filter = MATCH_ALL,
        *,
        session: DocumentSession | None = None,
    ) -> int:
        definition = self._registry.get(entity_type)
        return await self._target(session).count(definition.collection, where)

    async def update_one(
        self,
        entity_type: str,
        selector: Filter,
        patch: Mapping[str, Any],
        *,
        session: DocumentSession | None = None,
    ) -> dict[str, Any] | None:
        """Apply *patch* to the first record matching *selector*.

        ``updated_at`` is always overwritten with the current time, whatever
        the caller supplied. Immutable fields in *patch* are ignored. Returns
        the updated record, or ``None`` when nothing matched.
        """
        definition = self._registry.get(entity_type)
        ignored = [k for k in patch if k in definition.immutable_fields]
        if ignored:
            logger.debug("Ignoring immutable field(s) in %s update: %s", entity_type, ignored)
        changes = normalise_dates(
            {k: v for k, v in patch.items() if k not in definition.immutable_fields},
            definition.date_fields,
        )
        changes[UPDATED_AT] = self._clock()
        record = await self._target(session).update_one(definition.collection, selector, changes)
        if record is not None:
            logger.info(
                "Updated %s %s=%s", entity_type, definition.id_field, record.get(definition.id_field)
            )
        return record

    async def soft_delete(
        self,
        entity_type: str,
        selector: Filter,
        actor_id: int | None = None,
        *,
        session: DocumentSession | None = None,
    ) -> dict[str, Any] | None:
        """Mark the matching record inactive; the record is never removed."""
        return await self.update_one(
            entity_type,
            selector,
            {STATUS: False, UPDATED_BY: actor_id},
            session=session,
        )


def sort_spec(field: str, order: SortOrder | str | None) -> SortSpec:
    """Single ``(field, direction)`` sort specification."""
    return ((field, SortOrder.parse(order)),)
