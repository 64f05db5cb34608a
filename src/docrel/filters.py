"""Backend-neutral filter predicates over JSON documents.

A filter is a small tree of frozen dataclasses. The memory backend evaluates
it directly through :func:`matches`; the Postgres backend compiles it to
parameterised SQL over JSONB paths. Field names may be dotted paths into
nested objects (``CouponType.percentage``).

Equality against an array-valued field matches when the array contains the
value, so to-many foreign keys can be filtered like scalar ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_MISSING = object()


@dataclass(frozen=True)
class Eq:
    """``field == value`` (or ``value in field`` for arrays)."""

    field: str
    value: Any


@dataclass(frozen=True)
class In:
    """``field`` equals any of *values*; never matches when *values* is empty."""

    field: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Match:
    """Case-insensitive literal substring match on a string field."""

    field: str
    text: str


@dataclass(frozen=True)
class Range:
    """Inclusive bounds; either side may be omitted."""

    field: str
    gte: Any = None
    lte: Any = None


@dataclass(frozen=True)
class AllOf:
    clauses: tuple[Filter, ...] = ()


@dataclass(frozen=True)
class AnyOf:
    clauses: tuple[Filter, ...] = ()


type Filter = Eq | In | Match | Range | AllOf | AnyOf

MATCH_ALL = AllOf(())


def and_(*clauses: Filter | None) -> Filter:
    """Combine clauses with AND, flattening nested conjunctions."""
    flat: list[Filter] = []
    for clause in clauses:
        if clause is None:
            continue
        if isinstance(clause, AllOf):
            flat.extend(clause.clauses)
        else:
            flat.append(clause)
    if len(flat) == 1:
        return flat[0]
    return AllOf(tuple(flat))


def split_path(field: str) -> list[str]:
    """Split a dotted field path into its segments."""
    return field.split(".")


def lookup(document: dict[str, Any], field: str) -> Any:
    """Return the value at *field*, or the ``_MISSING`` sentinel."""
    current: Any = document
    for segment in split_path(field):
        if not isinstance(current, dict) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


def json_equal(left: Any, right: Any) -> bool:
    """Equality with JSON semantics: ``true`` never equals ``1``."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return left == right


def _eq_matches(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is _MISSING or value is None
    if value is _MISSING:
        return False
    if isinstance(value, list) and not isinstance(expected, list):
        return any(json_equal(item, expected) for item in value)
    return json_equal(value, expected)


def _comparable(value: Any, bound: Any) -> bool:
    if isinstance(bound, str):
        return isinstance(value, str)
    if isinstance(bound, bool) or isinstance(value, bool):
        return False
    return isinstance(value, (int, float)) and isinstance(bound, (int, float))


def _range_matches(value: Any, clause: Range) -> bool:
    if value is _MISSING or value is None:
        return False
    for bound, ok in ((clause.gte, lambda v, b: v >= b), (clause.lte, lambda v, b: v <= b)):
        if bound is None:
            continue
        if not _comparable(value, bound) or not ok(value, bound):
            return False
    return True


def matches(clause: Filter, document: dict[str, Any]) -> bool:
    """Evaluate *clause* against *document* in-process."""
    match clause:
        case Eq(field=field, value=expected):
            return _eq_matches(lookup(document, field), expected)
        case In(field=field, values=values):
            value = lookup(document, field)
            return any(_eq_matches(value, expected) for expected in values)
        case Match(field=field, text=text):
            value = lookup(document, field)
            return isinstance(value, str) and text.casefold() in value.casefold()
        case Range():
            return _range_matches(lookup(document, clause.field), clause)
        case AllOf(clauses=clauses):
            return all(matches(c, document) for c in clauses)
        case AnyOf(clauses=clauses):
            return any(matches(c, document) for c in clauses)
    raise TypeError(f"Unsupported filter clause: {clause!r}")
