"""Static declarations describing entity types.

An ``EntityDefinition`` is declared once per entity type, registered at
startup, and consumed by every read and write: which field carries the
public sequential id, which fields are numeric foreign keys (relation
descriptors), and which request parameters map onto which filter clauses.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

# Fields every entity record carries.
INTERNAL_ID = "_id"
STATUS = "Status"
CREATED_BY = "created_by"
UPDATED_BY = "updated_by"
CREATED_AT = "created_at"
UPDATED_AT = "updated_at"

# Fields an update may never overwrite (the public id field is added per entity).
IMMUTABLE_FIELDS: frozenset[str] = frozenset({INTERNAL_ID, CREATED_BY, CREATED_AT})

DEFAULT_USER_ENTITY = "User"
DEFAULT_USER_ID_FIELD = "user_id"
DEFAULT_USER_PROJECTION: tuple[str, ...] = ("firstName", "lastName", "phoneNo", "BusinessName")


class FieldKind(enum.StrEnum):
    """How a request parameter is turned into a filter clause."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE_FROM = "date_from"  # field >= value
    DATE_TO = "date_to"  # field <= value


class SortOrder(enum.StrEnum):
    """Sort direction for list queries."""

    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: str | SortOrder | None) -> SortOrder:
        """Map ``"asc"`` to ascending; anything else sorts descending."""
        if isinstance(value, SortOrder):
            return value
        if isinstance(value, str) and value.strip().lower() == "asc":
            return cls.ASC
        return cls.DESC


@dataclass(frozen=True)
class RelationDescriptor:
    """A numeric foreign key and how to resolve it.

    ``target_field`` defaults to the target entity's public id field once the
    target is registered. An empty ``fields`` tuple projects the whole
    referenced record.
    """

    field: str
    target: str
    fields: tuple[str, ...] = ()
    target_field: str | None = None
    many: bool = False
    must_exist: bool = False


@dataclass(frozen=True)
class FilterField:
    """Maps request parameter *param* onto document *field*."""

    param: str
    field: str
    kind: FieldKind


@dataclass(frozen=True)
class CodeSpec:
    """A human-facing unique code minted on create when the caller omits it."""

    field: str
    prefix: str = ""
    length: int = 10


@dataclass
class EntityDefinition:
    """Everything the access layer needs to know about one entity type."""

    name: str
    id_field: str
    collection: str = ""
    search_fields: tuple[str, ...] = ()
    filters: tuple[FilterField, ...] = ()
    relations: tuple[RelationDescriptor, ...] = ()
    code: CodeSpec | None = None
    immutable_fields: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.collection:
            self.collection = self.name
        self.search_fields = tuple(self.search_fields)
        self.filters = tuple(self.filters)
        self.relations = tuple(self.relations)
        self.immutable_fields = IMMUTABLE_FIELDS | {self.id_field}

    @property
    def date_fields(self) -> frozenset[str]:
        """Document fields targeted by a ``from``/``to`` date filter."""
        return frozenset(
            f.field for f in self.filters if f.kind in (FieldKind.DATE_FROM, FieldKind.DATE_TO)
        )

    def relation(self, field_name: str) -> RelationDescriptor | None:
        """Return the relation declared on *field_name*, if any."""
        for descriptor in self.relations:
            if descriptor.field == field_name:
                return descriptor
        return None


def audit_relations(
    target: str = DEFAULT_USER_ENTITY,
    target_field: str = DEFAULT_USER_ID_FIELD,
    fields: tuple[str, ...] = DEFAULT_USER_PROJECTION,
) -> tuple[RelationDescriptor, RelationDescriptor]:
    """Relation descriptors for the ``created_by`` / ``updated_by`` audit keys."""
    projection = (target_field, *[f for f in fields if f != target_field])
    return (
        RelationDescriptor(CREATED_BY, target, projection, target_field=target_field),
        RelationDescriptor(UPDATED_BY, target, projection, target_field=target_field),
    )
