"""Translate an already-split request parameter bag into a store filter.

Each entity type declares a table of filter fields (parameter name, document
field, kind). The builder applies every recognised parameter independently
and ANDs the resulting clauses. Parameters whose values do not parse for
their kind are dropped rather than rejected: listing stays permissive and
strict validation belongs to the request layer.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from typing import Any

from docrel.filters import MATCH_ALL, AnyOf, Eq, Filter, Match, Range, and_
from docrel.model import STATUS, EntityDefinition, FieldKind, FilterField

logger = logging.getLogger(__name__)

SEARCH_PARAM = "search"
STATUS_PARAM = "status"
STATUS_FILTER = FilterField(STATUS_PARAM, STATUS, FieldKind.BOOLEAN)

_INTEGER_PATTERN = re.compile(r"^[+-]?[0-9]+$")


def parse_bool(value: Any) -> bool | None:
    """``True``/``False`` from a native bool or the literals ``"true"``/``"false"``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    return None


def parse_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if isinstance(number, float):
        if not math.isfinite(number):
            return None
        if number.is_integer():
            return int(number)
    return number


def parse_string(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_datetime(value: Any) -> str | None:
    """Normalise a date/datetime (or ISO string) to the stored UTC text form.

    Naive values are taken as UTC; a bare date means midnight.
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        try:
            moment = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


class QueryFilterBuilder:
    """Build a filter for one entity type from request parameters."""

    def __init__(self, definition: EntityDefinition) -> None:
        self._definition = definition
        fields = list(definition.filters)
        if not any(f.param == STATUS_PARAM for f in fields):
            fields.insert(0, STATUS_FILTER)
        self._fields: tuple[FilterField, ...] = tuple(fields)

    @property
    def fields(self) -> tuple[FilterField, ...]:
        return self._fields

    def _search_clause(self, value: Any) -> Filter | None:
        if not isinstance(value, str) or not value.strip():
            return None
        if not self._definition.search_fields:
            return None
        text = value.strip()
        return AnyOf(tuple(Match(field, text) for field in self._definition.search_fields))

    @staticmethod
    def _clause(spec: FilterField, raw: Any) -> Filter | None:
        match spec.kind:
            case FieldKind.BOOLEAN:
                parsed = parse_bool(raw)
                return None if parsed is None else Eq(spec.field, parsed)
            case FieldKind.INTEGER:
                parsed = parse_int(raw)
                return None if parsed is None else Eq(spec.field, parsed)
            case FieldKind.NUMBER:
                parsed = parse_number(raw)
                return None if parsed is None else Eq(spec.field, parsed)
            case FieldKind.STRING:
                parsed = parse_string(raw)
                return None if parsed is None else Eq(spec.field, parsed)
            case FieldKind.DATE_FROM:
                parsed = parse_datetime(raw)
                return None if parsed is None else Range(spec.field, gte=parsed)
            case FieldKind.DATE_TO:
                parsed = parse_datetime(raw)
                return None if parsed is None else Range(spec.field, lte=parsed)
        return None

    def build(self, params: Mapping[str, Any] | None, *extra: Filter) -> Filter:
        """Return the AND of every clause *params* yields, plus *extra* clauses.

        An absent (or ``None``) parameter contributes no clause; in particular
        a missing ``status`` does not restrict to active records.
        """
        params = params or {}
        clauses: list[Filter] = []

        search = self._search_clause(params.get(SEARCH_PARAM))
        if search is not None:
            clauses.append(search)

        for spec in self._fields:
            raw = params.get(spec.param)
            if raw is None:
                continue
            clause = self._clause(spec, raw)
            if clause is None:
                logger.debug(
                    "Dropping unparseable %s filter %s=%r", self._definition.name, spec.param, raw
                )
                continue
            clauses.append(clause)

        clauses.extend(extra)
        if not clauses:
            return MATCH_ALL
        return and_(*clauses)
