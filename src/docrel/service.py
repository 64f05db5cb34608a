"""Per-entity operations exposed to the (external) request layer.

``ResourceService`` composes the access-layer components the same way for
every entity type:

- create: reference check → code minting → sequence + insert → populate
- get: dual-key resolve → populate
- list: filter build → find + count → populate → page metadata
- update / soft delete: dual-key selector → update (stamping ``updated_*``) → populate
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Mapping
from typing import Any

from docrel.codes import UniqueCodeGenerator, random_code
from docrel.core.telemetry import operation_span
from docrel.entities import EntityStore
from docrel.errors import EntityNotFoundError, MissingActorError
from docrel.filters import Eq, Filter
from docrel.identifiers import DualKeyResolver
from docrel.model import CREATED_AT, CREATED_BY, UPDATED_BY, CodeSpec, EntityDefinition, SortOrder
from docrel.pagination import Page, Paginator
from docrel.query import QueryFilterBuilder
from docrel.relations import RelationPopulator

logger = logging.getLogger(__name__)

DEFAULT_SORT_BY = CREATED_AT
DEFAULT_SORT_ORDER = SortOrder.DESC


class ResourceService:
    """create / get / list / update / soft-delete for one entity type."""

    def __init__(
        self,
        definition: EntityDefinition,
        *,
        entities: EntityStore,
        resolver: DualKeyResolver,
        populator: RelationPopulator,
        paginator: Paginator,
        codes: UniqueCodeGenerator,
        default_sort_by: str = DEFAULT_SORT_BY,
        default_sort_order: SortOrder | str = DEFAULT_SORT_ORDER,
    ) -> None:
        self.definition = definition
        self._entities = entities
        self._resolver = resolver
        self._populator = populator
        self._paginator = paginator
        self._codes = codes
        self._filters = QueryFilterBuilder(definition)
        self.default_sort_by = default_sort_by
        self.default_sort_order = SortOrder.parse(default_sort_order)

    @property
    def name(self) -> str:
        return self.definition.name

    # -- helpers ----------------------------------------------------------

    async def _code_exists(self, field: str, code: str) -> bool:
        return await self._entities.count(self.name, Eq(field, code)) > 0

    async def _mint_code(self, spec: CodeSpec) -> str:
        return await self._codes.generate(
            self.name,
            lambda: random_code(spec.length, prefix=spec.prefix),
            functools.partial(self._code_exists, spec.field),
        )

    @staticmethod
    def _normalize_code(value: Any) -> str | None:
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
        return None

    # -- operations -------------------------------------------------------

    async def create(
        self,
        fields: Mapping[str, Any],
        actor_id: int | None = None,
    ) -> dict[str, Any]:
        """Create a record and return it with relations populated.

        Raises:
            ForeignKeyError: a must-exist reference does not resolve.
            SequenceError: no public id could be issued; nothing was written.
        """
        with operation_span("create", entity_type=self.name):
            payload = dict(fields)
            await self._populator.ensure_references(self.name, payload)
            spec = self.definition.code
            if spec is not None:
                payload[spec.field] = (
                    self._normalize_code(payload.get(spec.field)) or await self._mint_code(spec)
                )
            record = await self._entities.create(self.name, payload, actor_id=actor_id)
            return await self._populator.populate(self.name, record)

    async def get_by_dual_key(
        self,
        identifier: Any,
        *,
        owner_id: int | None = None,
        populate: bool = True,
    ) -> dict[str, Any]:
        """Return the record addressed by an internal or public id.

        Soft-deleted records are returned too. With *owner_id*, a record
        created by someone else is reported as not found.

        Raises:
            InvalidIdentifierError: malformed identifier (no store access).
            EntityNotFoundError: nothing visible under that identifier.
        """
        with operation_span("get", entity_type=self.name):
            record = await self._resolver.resolve(self.name, identifier)
            if owner_id is not None and record.get(CREATED_BY) != owner_id:
                raise EntityNotFoundError(self.name, identifier)
            if not populate:
                return record
            return await self._populator.populate(self.name, record)

    async def list(
        self,
        filter_params: Mapping[str, Any] | None = None,
        page: Any = 1,
        limit: Any = None,
        sort_by: str | None = None,
        sort_order: SortOrder | str | None = None,
    ) -> Page[dict[str, Any]]:
        """One page of records matching *filter_params*, relations populated.

        Without a ``status`` parameter both active and inactive records match.
        """
        with operation_span("list", entity_type=self.name):
            where = self._filters.build(filter_params)
            return await self._page(where, page, limit, sort_by, sort_order)

    async def list_by_actor(
        self,
        actor_id: int | None,
        filter_params: Mapping[str, Any] | None = None,
        page: Any = 1,
        limit: Any = None,
        sort_by: str | None = None,
        sort_order: SortOrder | str | None = None,
    ) -> Page[dict[str, Any]]:
        """Like :meth:`list`, restricted to records created by *actor_id*."""
        if actor_id is None:
            raise MissingActorError(f"{self.name}: an actor id is required for owner listing")
        with operation_span("list_by_actor", entity_type=self.name):
            where = self._filters.build(filter_params, Eq(CREATED_BY, actor_id))
            return await self._page(where, page, limit, sort_by, sort_order)

    async def _page(
        self,
        where: Filter,
        page: Any,
        limit: Any,
        sort_by: str | None,
        sort_order: SortOrder | str | None,
    ) -> Page[dict[str, Any]]:
        order = self.default_sort_order if sort_order is None else SortOrder.parse(sort_order)
        return await self._paginator.paginate(
            self.name,
            where,
            (sort_by or self.default_sort_by, order),
            page,
            limit,
            transform=lambda items: self._populator.populate(self.name, items),
        )

    async def update(
        self,
        identifier: Any,
        patch: Mapping[str, Any],
        actor_id: int | None = None,
    ) -> dict[str, Any]:
        """Apply *patch* and return the populated record.

        The public id, internal id and ``created_*`` fields cannot be changed;
        ``updated_by`` and ``updated_at`` are always stamped. The target is
        resolved before references in *patch* are checked.

        Raises:
            InvalidIdentifierError: malformed identifier (no store access).
            EntityNotFoundError: nothing under that identifier.
            ForeignKeyError: a must-exist reference in *patch* does not resolve.
        """
        with operation_span("update", entity_type=self.name):
            selector = self._resolver.selector(self.name, identifier)
            if not await self._entities.count(self.name, selector):
                raise EntityNotFoundError(self.name, identifier)
            changes = dict(patch)
            await self._populator.ensure_references(self.name, changes)
            if self.definition.code is not None and self.definition.code.field in changes:
                field = self.definition.code.field
                code = self._normalize_code(changes[field])
                if code is None:
                    changes.pop(field)
                else:
                    changes[field] = code
            changes[UPDATED_BY] = actor_id
            record = await self._entities.update_one(self.name, selector, changes)
            if record is None:
                raise EntityNotFoundError(self.name, identifier)
            return await self._populator.populate(self.name, record)

    async def soft_delete(
        self,
        identifier: Any,
        actor_id: int | None = None,
    ) -> dict[str, Any]:
        """Flip ``Status`` to false and stamp ``updated_by``/``updated_at``.

        Raises:
            InvalidIdentifierError: malformed identifier (no store access).
            EntityNotFoundError: nothing under that identifier.
        """
        with operation_span("soft_delete", entity_type=self.name):
            selector = self._resolver.selector(self.name, identifier)
            record = await self._entities.soft_delete(self.name, selector, actor_id)
            if record is None:
                raise EntityNotFoundError(self.name, identifier)
            logger.info("Soft-deleted %s %r", self.name, identifier)
            return await self._populator.populate(self.name, record)
