"""Internal and public identifiers, and dual-key resolution.

Every record is addressable two ways: by its internal identifier (a
24-character hexadecimal token assigned by the store layer) and by its
public sequential id (a small positive integer, unique per entity type).
Public ids are the stable API surface; internal ids are still accepted
because some callers pass them through directly.
"""

from __future__ import annotations

import enum
import itertools
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from docrel.errors import EntityNotFoundError, InvalidIdentifierError
from docrel.filters import Eq, Filter
from docrel.model import INTERNAL_ID

if TYPE_CHECKING:
    from docrel.entities import EntityStore
    from docrel.registry import EntityRegistry
    from docrel.store.base import DocumentSession

logger = logging.getLogger(__name__)

_INTERNAL_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
_PUBLIC_ID_PATTERN = re.compile(r"^[0-9]+$")

# Layout: 4-byte seconds | 5-byte per-process random | 3-byte counter.
_PROCESS_RANDOM = secrets.token_hex(5)
_counter = itertools.count(secrets.randbelow(0xFFFFFF))


def new_internal_id() -> str:
    """Mint a fresh internal identifier (lowercase hex, 24 chars)."""
    seconds = int(time.time()) & 0xFFFFFFFF
    return f"{seconds:08x}{_PROCESS_RANDOM}{next(_counter) & 0xFFFFFF:06x}"


def is_internal_id(value: Any) -> bool:
    return isinstance(value, str) and _INTERNAL_ID_PATTERN.fullmatch(value) is not None


class IdentifierKind(enum.StrEnum):
    INTERNAL = "internal"
    PUBLIC = "public"


@dataclass(frozen=True)
class Identifier:
    """A classified caller-supplied identifier."""

    kind: IdentifierKind
    value: str | int


def classify(identifier: Any) -> Identifier | None:
    """Classify *identifier*, or return ``None`` when it matches neither form.

    A 24-character hex token is an internal id; a base-10 integer string (or
    a plain ``int``) is a public id. The internal form is tested first, so a
    24-digit decimal string is treated as an internal id.
    """
    if isinstance(identifier, bool):
        return None
    if isinstance(identifier, int):
        return Identifier(IdentifierKind.PUBLIC, identifier) if identifier >= 0 else None
    if not isinstance(identifier, str):
        return None
    candidate = identifier.strip()
    if _INTERNAL_ID_PATTERN.fullmatch(candidate):
        return Identifier(IdentifierKind.INTERNAL, candidate.lower())
    if _PUBLIC_ID_PATTERN.fullmatch(candidate):
        return Identifier(IdentifierKind.PUBLIC, int(candidate))
    return None


class DualKeyResolver:
    """Resolve an entity by either identifier form.

    Exactly one lookup path is attempted per call; a public id that does not
    exist is never retried as an internal id or the other way round.
    """

    def __init__(self, registry: EntityRegistry, entities: EntityStore) -> None:
        self._registry = registry
        self._entities = entities

    def selector(self, entity_type: str, identifier: Any) -> Filter:
        """Return the store filter addressing *identifier*.

        Raises:
            InvalidIdentifierError: before any store access, when *identifier*
                matches neither form.
        """
        definition = self._registry.get(entity_type)
        classified = classify(identifier)
        if classified is None:
            raise InvalidIdentifierError(entity_type, identifier)
        if classified.kind is IdentifierKind.INTERNAL:
            return Eq(INTERNAL_ID, classified.value)
        return Eq(definition.id_field, classified.value)

    async def resolve(
        self,
        entity_type: str,
        identifier: Any,
        *,
        session: DocumentSession | None = None,
    ) -> dict[str, Any]:
        """Return the record addressed by *identifier*.

        Raises:
            InvalidIdentifierError: *identifier* is malformed (no store access).
            EntityNotFoundError: no record carries that identifier.
        """
        where = self.selector(entity_type, identifier)
        record = await self._entities.find_one(entity_type, where, session=session)
        if record is None:
            logger.debug("%s %r did not resolve", entity_type, identifier)
            raise EntityNotFoundError(entity_type, identifier)
        return record
