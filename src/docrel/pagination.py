"""Page/limit pagination over an entity collection.

``find`` and ``count`` are independent reads of the same filter and run
concurrently; under concurrent writes the total may be off by one relative
to the page, which is accepted.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from docrel.entities import EntityStore
from docrel.filters import Filter
from docrel.model import SortOrder
from docrel.query import parse_int

DEFAULT_LIMIT = 10
MAX_LIMIT = 100

type ItemsTransform = Callable[[list[dict[str, Any]]], Awaitable[list[dict[str, Any]]]]


class PaginationMeta(BaseModel):
    """Pagination metadata; serialises with camelCase keys (``currentPage``, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def compute(cls, page: int, limit: int, total: int) -> PaginationMeta:
        """Metadata for *page* of *limit* items out of *total*; at least one page."""
        total_pages = max(1, math.ceil(total / limit))
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            items_per_page=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class Page[T](BaseModel):
    """One page of results: ``{"items": [...], "meta": {...}}``."""

    items: list[T]
    meta: PaginationMeta

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def clamp_limit(requested: Any, *, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    """``max(1, min(requested, maximum))``; unparseable input uses *default*."""
    value = parse_int(requested)
    if value is None:
        value = default
    return max(1, min(value, maximum))


def clamp_page(requested: Any) -> int:
    """``max(1, requested)``; unparseable input means page 1."""
    value = parse_int(requested)
    return max(1, value if value is not None else 1)


class Paginator:
    """Combine filter, sort and page/limit into a :class:`Page`."""

    def __init__(
        self,
        entities: EntityStore,
        *,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ) -> None:
        self._entities = entities
        self.default_limit = default_limit
        self.max_limit = max_limit

    async def paginate(
        self,
        entity_type: str,
        where: Filter,
        sort: tuple[str, SortOrder | str],
        page: Any = 1,
        limit: Any = None,
        *,
        transform: ItemsTransform | None = None,
    ) -> Page[dict[str, Any]]:
        """Fetch one page and its metadata.

        *transform* (typically relation population) runs on the fetched items
        after both reads complete.
        """
        page_number = clamp_page(page)
        page_size = clamp_limit(limit, default=self.default_limit, maximum=self.max_limit)
        skip = (page_number - 1) * page_size
        sort_field, sort_order = sort

        items, total = await asyncio.gather(
            self._entities.find(
                entity_type,
                where,
                sort=((sort_field, SortOrder.parse(sort_order)),),
                skip=skip,
                limit=page_size,
            ),
            self._entities.count(entity_type, where),
        )
        if transform is not None:
            items = await transform(items)

        return Page[dict[str, Any]](
            items=items,
            meta=PaginationMeta.compute(page_number, page_size, total),
        )
