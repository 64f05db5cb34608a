"""DDL for the Postgres document store.

All statements are idempotent so they can run on every startup.
"""

from __future__ import annotations

import hashlib
import logging
import re

logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MAX_IDENTIFIER_LENGTH = 63

DOCUMENTS_TABLE = "documents"
COUNTERS_TABLE = "sequence_counters"

SCHEMA_STATEMENTS: tuple[str, ...] = (
    f"""
    CREATE TABLE IF NOT EXISTS {DOCUMENTS_TABLE} (
        collection TEXT NOT NULL,
        id CHAR(24) NOT NULL,
        body JSONB NOT NULL,
        PRIMARY KEY (collection, id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {COUNTERS_TABLE} (
        name TEXT PRIMARY KEY,
        value BIGINT NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS {DOCUMENTS_TABLE}_body_gin ON {DOCUMENTS_TABLE} USING GIN (body)",
)


def validate_identifier(value: str, what: str = "identifier") -> str:
    """Return *value* if it is a plain SQL-style identifier, else raise ValueError."""
    if _IDENTIFIER_PATTERN.fullmatch(value) is None:
        raise ValueError(f"Invalid {what}: {value!r}. Expected [A-Za-z_][A-Za-z0-9_]*.")
    return value


def unique_index_name(collection: str, field: str) -> str:
    """Index name for a unique field, distinct per exact (collection, field) pair.

    The readable part is lowercased and truncated; the digest suffix keeps
    names apart when collections differ only in case or share a long prefix.
    """
    digest = hashlib.sha256(f"{collection}\0{field}".encode()).hexdigest()[:8]
    suffix = f"_{digest}_uniq"
    readable = f"{DOCUMENTS_TABLE}_{collection}_{field}".lower()
    return readable[: _MAX_IDENTIFIER_LENGTH - len(suffix)] + suffix


def unique_index_statement(collection: str, field: str) -> str:
    """Partial unique expression index on ``body->>field`` for one collection.

    Values are interpolated (DDL takes no parameters), so both names must
    pass :func:`validate_identifier` first.
    """
    validate_identifier(collection, "collection name")
    validate_identifier(field, "field name")
    return (
        f'CREATE UNIQUE INDEX IF NOT EXISTS "{unique_index_name(collection, field)}" '
        f"ON {DOCUMENTS_TABLE} ((body ->> '{field}')) "
        f"WHERE collection = '{collection}'"
    )
