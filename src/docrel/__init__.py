"""docrel: numeric-key relational access over a document store."""

from docrel.app import Docrel
from docrel.config import DocrelConfig, load_config
from docrel.errors import (
    ConfigError,
    DocrelError,
    EntityNotFoundError,
    ForeignKeyError,
    InvalidIdentifierError,
    MissingActorError,
    SequenceError,
    UnknownEntityError,
)
from docrel.model import (
    CodeSpec,
    EntityDefinition,
    FieldKind,
    FilterField,
    RelationDescriptor,
    SortOrder,
)
from docrel.service import ResourceService

__all__ = [
    "CodeSpec",
    "ConfigError",
    "Docrel",
    "DocrelConfig",
    "DocrelError",
    "EntityDefinition",
    "EntityNotFoundError",
    "FieldKind",
    "FilterField",
    "ForeignKeyError",
    "InvalidIdentifierError",
    "MissingActorError",
    "RelationDescriptor",
    "ResourceService",
    "SequenceError",
    "SortOrder",
    "UnknownEntityError",
    "load_config",
]
