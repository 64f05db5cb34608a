"""Explicit registry of entity definitions.

Definitions are registered once during startup, before any request is
served. Registering the same definition twice is a no-op; registering a
different definition under an existing name is a configuration error.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator

from docrel.errors import ConfigError, UnknownEntityError
from docrel.model import EntityDefinition, RelationDescriptor
from docrel.store.base import DocumentStore

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_name(value: str, what: str) -> None:
    if not isinstance(value, str) or _NAME_PATTERN.fullmatch(value) is None:
        raise ConfigError(f"Invalid {what}: {value!r}. Expected [A-Za-z_][A-Za-z0-9_]*.")


def _check_path(value: str, what: str) -> None:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Invalid {what}: {value!r}")
    for segment in value.split("."):
        _check_name(segment, what)


class EntityRegistry:
    """Name → :class:`EntityDefinition` lookup shared by every component."""

    def __init__(self, definitions: Iterable[EntityDefinition] = ()) -> None:
        self._definitions: dict[str, EntityDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: EntityDefinition) -> EntityDefinition:
        """Register *definition*; idempotent for an identical definition."""
        existing = self._definitions.get(definition.name)
        if existing is not None:
            if existing == definition:
                return existing
            raise ConfigError(f"Entity {definition.name!r} is already registered differently")

        _check_name(definition.name, "entity name")
        _check_name(definition.collection, f"{definition.name} collection")
        _check_name(definition.id_field, f"{definition.name} id_field")
        for field in definition.search_fields:
            _check_path(field, f"{definition.name} search field")
        params: set[str] = set()
        for flt in definition.filters:
            _check_path(flt.field, f"{definition.name} filter field")
            if flt.param in params:
                raise ConfigError(f"{definition.name}: duplicate filter parameter {flt.param!r}")
            params.add(flt.param)
        seen: set[str] = set()
        for relation in definition.relations:
            _check_name(relation.field, f"{definition.name} relation field")
            if relation.field in seen:
                raise ConfigError(f"{definition.name}: duplicate relation on {relation.field!r}")
            seen.add(relation.field)
        if definition.code is not None:
            _check_name(definition.code.field, f"{definition.name} code field")
            if definition.code.length <= 0:
                raise ConfigError(f"{definition.name}: code length must be positive")

        self._definitions[definition.name] = definition
        logger.debug("Registered entity %s (collection=%s)", definition.name, definition.collection)
        return definition

    def get(self, name: str) -> EntityDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownEntityError(name) from None

    def names(self) -> list[str]:
        return sorted(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[EntityDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    # -- relation targets -------------------------------------------------

    def target_field(self, relation: RelationDescriptor) -> str:
        """Field on the referenced entity that holds the foreign-key value."""
        if relation.target_field:
            return relation.target_field
        return self.get(relation.target).id_field

    def target_collection(self, relation: RelationDescriptor) -> str:
        """Collection the relation points into."""
        if relation.target in self._definitions:
            return self._definitions[relation.target].collection
        return relation.target

    def validate(self) -> None:
        """Check every relation can be resolved; call after all registrations."""
        for definition in self._definitions.values():
            for relation in definition.relations:
                if relation.target_field is None and relation.target not in self._definitions:
                    raise ConfigError(
                        f"{definition.name}.{relation.field} references unregistered entity "
                        f"{relation.target!r} without an explicit target_field"
                    )
                if relation.target not in self._definitions:
                    _check_name(relation.target, f"{definition.name}.{relation.field} target")

    async def bootstrap(self, store: DocumentStore) -> None:
        """Validate and create the unique indexes every entity relies on."""
        self.validate()
        for definition in self._definitions.values():
            await store.ensure_unique(definition.collection, definition.id_field)
            if definition.code is not None:
                await store.ensure_unique(definition.collection, definition.code.field)
        logger.info("Bootstrapped %d entity type(s)", len(self._definitions))
