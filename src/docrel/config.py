"""Configuration loading and validation.

Reads a ``docrel.toml`` file, resolves ``${VAR}`` references against the
environment, and returns a validated :class:`DocrelConfig`. Entity tables
become :class:`~docrel.model.EntityDefinition` objects ready for
registration.

Example::

    [database]
    backend = "postgres"
    url = "${DATABASE_URL}"

    [[entities]]
    name = "Business_Branch"
    id_field = "business_Branch_id"
    search_fields = ["BusinessName", "Address"]

    [[entities]]
    name = "Discounts"
    id_field = "Discounts_id"
    search_fields = ["name", "Description"]
    code = { field = "code", length = 10 }

    [[entities.filters]]
    param = "business_Branch_id"
    field = "business_Branch_id"
    kind = "integer"

    [[entities.relations]]
    field = "business_Branch_id"
    target = "Business_Branch"
    fields = ["BusinessName", "Address"]
    must_exist = true
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from docrel.errors import ConfigError
from docrel.model import (
    CodeSpec,
    EntityDefinition,
    FieldKind,
    FilterField,
    RelationDescriptor,
    SortOrder,
    audit_relations,
)

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "DocrelConfig",
    "LoggingConfig",
    "PaginationConfig",
    "load_config",
    "parse_config",
    "resolve_env_vars",
]

CONFIG_FILENAME = "docrel.toml"

# Pattern matching ${VAR_NAME}: supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_BACKENDS = ("postgres", "memory")


@dataclass
class DatabaseConfig:
    """[database] section."""

    backend: str = "postgres"
    url: str | None = None
    min_pool_size: int = 2
    max_pool_size: int = 10


@dataclass
class LoggingConfig:
    """[logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"


@dataclass
class PaginationConfig:
    """[pagination] section."""

    default_limit: int = 10
    max_limit: int = 100
    default_sort_by: str = "created_at"
    default_sort_order: SortOrder = SortOrder.DESC


@dataclass
class DocrelConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    code_max_attempts: int = 10
    entities: list[EntityDefinition] = field(default_factory=list)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)
    if missing:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(missing)} "
            f"(original: {s!r})"
        )
    return result


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.")
    return raw


def _table(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{key}] must be a TOML table")
    return section


def _string_list(value: Any, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ConfigError(f"{path} must be a list of non-empty strings")
    return tuple(value)


def _required_str(entry: dict[str, Any], key: str, path: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path}.{key} must be a non-empty string")
    return value.strip()


def _parse_database(data: dict[str, Any]) -> DatabaseConfig:
    section = _table(data, "database")
    backend = str(section.get("backend", "postgres")).lower()
    if backend not in _BACKENDS:
        raise ConfigError(f"Invalid database.backend: {backend!r}. Expected one of {_BACKENDS}.")
    url = section.get("url")
    if url is not None and (not isinstance(url, str) or not url.strip()):
        raise ConfigError("database.url must be a non-empty string when set")
    min_pool = _positive_int(section, "min_pool_size", 2, "database")
    max_pool = _positive_int(section, "max_pool_size", 10, "database")
    if min_pool > max_pool:
        raise ConfigError("database.min_pool_size cannot exceed database.max_pool_size")
    return DatabaseConfig(backend=backend, url=url, min_pool_size=min_pool, max_pool_size=max_pool)


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _table(data, "logging")
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {fmt!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=level, format=fmt)


def _parse_pagination(data: dict[str, Any]) -> PaginationConfig:
    section = _table(data, "pagination")
    default_limit = _positive_int(section, "default_limit", 10, "pagination")
    max_limit = _positive_int(section, "max_limit", 100, "pagination")
    if default_limit > max_limit:
        raise ConfigError("pagination.default_limit cannot exceed pagination.max_limit")
    sort_by = section.get("default_sort_by", "created_at")
    if not isinstance(sort_by, str) or not sort_by.strip():
        raise ConfigError("pagination.default_sort_by must be a non-empty string")
    raw_order = str(section.get("default_sort_order", "desc")).lower()
    if raw_order not in ("asc", "desc"):
        raise ConfigError(f"Invalid pagination.default_sort_order: {raw_order!r}")
    return PaginationConfig(
        default_limit=default_limit,
        max_limit=max_limit,
        default_sort_by=sort_by.strip(),
        default_sort_order=SortOrder(raw_order),
    )


def _parse_filter(entry: Any, path: str) -> FilterField:
    if not isinstance(entry, dict):
        raise ConfigError(f"{path} must be a TOML table")
    param = _required_str(entry, "param", path)
    raw_kind = _required_str(entry, "kind", path).lower()
    try:
        kind = FieldKind(raw_kind)
    except ValueError:
        valid = ", ".join(k.value for k in FieldKind)
        raise ConfigError(f"Invalid {path}.kind: {raw_kind!r}. Expected one of: {valid}") from None
    doc_field = entry.get("field", param)
    if not isinstance(doc_field, str) or not doc_field.strip():
        raise ConfigError(f"{path}.field must be a non-empty string")
    return FilterField(param=param, field=doc_field.strip(), kind=kind)


def _parse_relation(entry: Any, path: str) -> RelationDescriptor:
    if not isinstance(entry, dict):
        raise ConfigError(f"{path} must be a TOML table")
    target_field = entry.get("target_field")
    if target_field is not None and (not isinstance(target_field, str) or not target_field):
        raise ConfigError(f"{path}.target_field must be a non-empty string when set")
    for flag in ("many", "must_exist"):
        if not isinstance(entry.get(flag, False), bool):
            raise ConfigError(f"{path}.{flag} must be a boolean")
    return RelationDescriptor(
        field=_required_str(entry, "field", path),
        target=_required_str(entry, "target", path),
        fields=_string_list(entry.get("fields"), f"{path}.fields"),
        target_field=target_field,
        many=entry.get("many", False),
        must_exist=entry.get("must_exist", False),
    )


def _parse_code(entry: Any, path: str) -> CodeSpec | None:
    if entry is None:
        return None
    if not isinstance(entry, dict):
        raise ConfigError(f"{path} must be a TOML table")
    prefix = entry.get("prefix", "")
    if not isinstance(prefix, str):
        raise ConfigError(f"{path}.prefix must be a string")
    return CodeSpec(
        field=_required_str(entry, "field", path),
        prefix=prefix,
        length=_positive_int(entry, "length", 10, path),
    )


def _parse_entity(entry: Any, index: int) -> EntityDefinition:
    path = f"entities[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{path} must be a TOML table")
    name = _required_str(entry, "name", path)
    filters = entry.get("filters", [])
    relations = entry.get("relations", [])
    if not isinstance(filters, list):
        raise ConfigError(f"{path}.filters must be an array of tables")
    if not isinstance(relations, list):
        raise ConfigError(f"{path}.relations must be an array of tables")
    if not isinstance(entry.get("audit", False), bool):
        raise ConfigError(f"{path}.audit must be a boolean")
    parsed_relations = tuple(
        _parse_relation(r, f"{path}.relations[{i}]") for i, r in enumerate(relations)
    )
    if entry.get("audit", False):
        parsed_relations += audit_relations()
    collection = entry.get("collection", name)
    if not isinstance(collection, str) or not collection.strip():
        raise ConfigError(f"{path}.collection must be a non-empty string")
    return EntityDefinition(
        name=name,
        id_field=_required_str(entry, "id_field", path),
        collection=collection.strip(),
        search_fields=_string_list(entry.get("search_fields"), f"{path}.search_fields"),
        filters=tuple(_parse_filter(f, f"{path}.filters[{i}]") for i, f in enumerate(filters)),
        relations=parsed_relations,
        code=_parse_code(entry.get("code"), f"{path}.code"),
    )


def parse_config(data: dict[str, Any]) -> DocrelConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)

    codes = _table(data, "codes")
    raw_entities = data.get("entities", [])
    if not isinstance(raw_entities, list):
        raise ConfigError("entities must be an array of tables ([[entities]])")
    entities = [_parse_entity(entry, i) for i, entry in enumerate(raw_entities)]
    names = [e.name for e in entities]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate entity name(s): {', '.join(duplicates)}")

    return DocrelConfig(
        database=_parse_database(data),
        logging=_parse_logging(data),
        pagination=_parse_pagination(data),
        code_max_attempts=_positive_int(codes, "max_attempts", 10, "codes"),
        entities=entities,
    )


def load_config(path: Path) -> DocrelConfig:
    """Load and validate ``docrel.toml``.

    Parameters
    ----------
    path:
        The TOML file, or a directory containing ``docrel.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    path = Path(path)
    toml_path = path / CONFIG_FILENAME if path.is_dir() else path
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")
    try:
        data = tomllib.loads(toml_path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc
    return parse_config(data)
