"""Exception taxonomy for the numeric-key access layer.

``InvalidIdentifierError`` and ``EntityNotFoundError`` are the recoverable,
caller-visible outcomes of a lookup; an HTTP layer maps them to 400 and 404.
``ForeignKeyError`` is a validation failure raised before anything is
persisted. ``SequenceError`` is fatal for the create that triggered it.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class DocrelError(Exception):
    """Base class for every error raised by docrel."""


class ConfigError(DocrelError):
    """Raised when configuration is missing, malformed, or invalid."""


class UnknownEntityError(DocrelError, KeyError):
    """Raised when an entity type was never registered."""

    def __init__(self, entity_type: str) -> None:
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: {entity_type!r}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidIdentifierError(DocrelError, ValueError):
    """The identifier matches neither the internal nor the public id syntax."""

    def __init__(self, entity_type: str, identifier: Any) -> None:
        self.entity_type = entity_type
        self.identifier = identifier
        super().__init__(f"Invalid {entity_type} identifier: {identifier!r}")


class EntityNotFoundError(DocrelError, LookupError):
    """A well-formed identifier resolved to no visible record."""

    def __init__(self, entity_type: str, identifier: Any) -> None:
        self.entity_type = entity_type
        self.identifier = identifier
        super().__init__(f"{entity_type} not found: {identifier!r}")


class ForeignKeyError(DocrelError):
    """A must-exist reference does not resolve to an active record.

    Attributes:
        entity_type: The entity being written.
        field: The foreign-key field that failed.
        target: The referenced entity type.
        missing: The referenced public ids that did not resolve.
    """

    def __init__(
        self,
        entity_type: str,
        field: str,
        target: str,
        missing: Iterable[Any],
    ) -> None:
        self.entity_type = entity_type
        self.field = field
        self.target = target
        self.missing = list(missing)
        super().__init__(
            f"{entity_type}.{field}: {target} not found or inactive: "
            f"{', '.join(repr(v) for v in self.missing)}"
        )


class SequenceError(DocrelError):
    """The atomic counter increment failed; the create was aborted."""

    def __init__(self, entity_type: str, reason: str) -> None:
        self.entity_type = entity_type
        super().__init__(f"Could not issue sequence value for {entity_type!r}: {reason}")


class MissingActorError(DocrelError):
    """An owner-scoped operation was called without an actor id."""
