"""Manual joins over numeric foreign keys.

The store's native references only understand internal identifiers, while
every foreign key in this system holds a public sequential id. Population
therefore happens here: for each relation declared on an entity type, the
distinct key values across the whole record set are looked up in one
batched query against the referenced collection, and each raw value is
replaced by the projected referenced record.

Population is best-effort. A key that does not resolve keeps its raw value
and never fails the read.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, overload

from docrel.core.metrics import AccessMetrics, access_metrics
from docrel.errors import ForeignKeyError
from docrel.filters import Eq, In, and_
from docrel.model import INTERNAL_ID, STATUS, RelationDescriptor
from docrel.registry import EntityRegistry
from docrel.store.base import DocumentSession, DocumentStore

logger = logging.getLogger(__name__)

_BATCH_SIZE = 500


def normalize_key(value: Any, target_field: str) -> int | str | None:
    """Return the lookup key held by a foreign-key value, or ``None``.

    Integers pass through, decimal strings become integers, and an already
    populated object is re-keyed from its *target_field*.
    """
    if isinstance(value, Mapping):
        return normalize_key(value.get(target_field), target_field)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
        return stripped or None
    return None


def _keys_of(value: Any, target_field: str) -> list[int | str]:
    values = value if isinstance(value, list) else [value]
    keys = []
    for item in values:
        key = normalize_key(item, target_field)
        if key is not None:
            keys.append(key)
    return keys


def _project(document: Mapping[str, Any], relation: RelationDescriptor, target_field: str) -> dict:
    if not relation.fields:
        return dict(document)
    projected: dict[str, Any] = {}
    for name in (INTERNAL_ID, target_field, *relation.fields):
        if name in document and name not in projected:
            projected[name] = document[name]
    return projected


class RelationPopulator:
    """Resolve declared relations on one record or a list of records."""

    def __init__(
        self,
        registry: EntityRegistry,
        store: DocumentStore,
        *,
        metrics: AccessMetrics | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._metrics = metrics or access_metrics()

    async def _lookup(
        self,
        relation: RelationDescriptor,
        keys: Iterable[int | str],
        *,
        active_only: bool = False,
        session: DocumentSession | None = None,
    ) -> dict[int | str, dict[str, Any]]:
        target_field = self._registry.target_field(relation)
        collection = self._registry.target_collection(relation)
        target = session if session is not None else self._store
        ordered = list(dict.fromkeys(keys))
        found: dict[int | str, dict[str, Any]] = {}
        for start in range(0, len(ordered), _BATCH_SIZE):
            chunk = tuple(ordered[start : start + _BATCH_SIZE])
            where = In(target_field, chunk)
            if active_only:
                where = and_(where, Eq(STATUS, True))
            for document in await target.find(collection, where):
                key = normalize_key(document.get(target_field), target_field)
                if key is not None:
                    found.setdefault(key, document)
        return found

    async def _populate_relation(
        self,
        entity_type: str,
        relation: RelationDescriptor,
        records: Sequence[dict[str, Any]],
        session: DocumentSession | None,
    ) -> None:
        target_field = self._registry.target_field(relation)
        keys = [
            key
            for record in records
            if record.get(relation.field) is not None
            for key in _keys_of(record[relation.field], target_field)
        ]
        if not keys:
            return

        self._metrics.relation_lookup(entity_type, relation.field)
        found = await self._lookup(relation, keys, session=session)
        projected = {key: _project(doc, relation, target_field) for key, doc in found.items()}

        dangling = 0
        for record in records:
            value = record.get(relation.field)
            if value is None:
                continue
            if isinstance(value, list):
                replaced = []
                for item in value:
                    key = normalize_key(item, target_field)
                    if key in projected:
                        replaced.append(dict(projected[key]))
                    else:
                        if key is not None:
                            dangling += 1
                        replaced.append(item)
                record[relation.field] = replaced
            else:
                key = normalize_key(value, target_field)
                if key in projected:
                    record[relation.field] = dict(projected[key])
                elif key is not None:
                    dangling += 1

        if dangling:
            self._metrics.relation_dangling(entity_type, relation.field, dangling)
            logger.warning(
                "%s.%s: %d reference(s) to %s did not resolve; raw values kept",
                entity_type,
                relation.field,
                dangling,
                relation.target,
            )

    @overload
    async def populate(
        self,
        entity_type: str,
        records: dict[str, Any],
        *,
        session: DocumentSession | None = None,
    ) -> dict[str, Any]: ...

    @overload
    async def populate(
        self,
        entity_type: str,
        records: list[dict[str, Any]],
        *,
        session: DocumentSession | None = None,
    ) -> list[dict[str, Any]]: ...

    async def populate(self, entity_type, records, *, session=None):
        """Return copies of *records* with declared relations resolved.

        Accepts a single record or a list and returns the same shape. The
        input records are not modified.
        """
        definition = self._registry.get(entity_type)
        single = isinstance(records, Mapping)
        items = [dict(records)] if single else [dict(r) for r in records]
        if definition.relations and items:
            await asyncio.gather(
                *(
                    self._populate_relation(entity_type, relation, items, session)
                    for relation in definition.relations
                )
            )
        return items[0] if single else items

    async def ensure_references(
        self,
        entity_type: str,
        fields: Mapping[str, Any],
        *,
        session: DocumentSession | None = None,
    ) -> None:
        """Check every ``must_exist`` reference in *fields* points at an active record.

        Only fields present with a non-null value are checked.

        Raises:
            ForeignKeyError: for the first relation with unresolved values.
        """
        definition = self._registry.get(entity_type)
        for relation in definition.relations:
            if not relation.must_exist or fields.get(relation.field) is None:
                continue
            target_field = self._registry.target_field(relation)
            raw = fields[relation.field]
            values = raw if isinstance(raw, list) else [raw]
            keys = [normalize_key(v, target_field) for v in values]
            invalid = [v for v, k in zip(values, keys, strict=True) if k is None]
            if invalid:
                raise ForeignKeyError(entity_type, relation.field, relation.target, invalid)
            found = await self._lookup(relation, keys, active_only=True, session=session)
            missing = [k for k in dict.fromkeys(keys) if k not in found]
            if missing:
                raise ForeignKeyError(entity_type, relation.field, relation.target, missing)
