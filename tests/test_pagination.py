"""Tests for docrel.pagination."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from docrel.filters import MATCH_ALL
from docrel.model import SortOrder
from docrel.pagination import Page, PaginationMeta, Paginator, clamp_limit, clamp_page

pytestmark = pytest.mark.unit


def test_meta_middle_page():
    meta = PaginationMeta.compute(page=2, limit=10, total=23)
    assert meta.total_pages == 3
    assert meta.has_next_page is True
    assert meta.has_prev_page is True


def test_meta_last_page():
    meta = PaginationMeta.compute(page=3, limit=10, total=23)
    assert meta.has_next_page is False
    assert meta.has_prev_page is True


def test_meta_empty_result_still_has_one_page():
    meta = PaginationMeta.compute(page=1, limit=10, total=0)
    assert meta.total_pages == 1
    assert meta.has_next_page is False
    assert meta.has_prev_page is False


def test_meta_serialises_camel_case():
    meta = PaginationMeta.compute(page=1, limit=5, total=6)
    assert meta.model_dump(by_alias=True) == {
        "currentPage": 1,
        "totalPages": 2,
        "totalItems": 6,
        "itemsPerPage": 5,
        "hasNextPage": True,
        "hasPrevPage": False,
    }


@pytest.mark.parametrize(
    ("requested", "expected"),
    [(None, 10), ("abc", 10), ("0", 1), (-5, 1), ("25", 25), (1000, 100)],
)
def test_clamp_limit(requested, expected):
    assert clamp_limit(requested) == expected


@pytest.mark.parametrize(("requested", "expected"), [(None, 1), ("x", 1), (0, 1), (-2, 1), ("4", 4)])
def test_clamp_page(requested, expected):
    assert clamp_page(requested) == expected


async def test_paginate_runs_find_and_count():
    entities = MagicMock()
    entities.find = AsyncMock(return_value=[{"n": 1}, {"n": 2}])
    entities.count = AsyncMock(return_value=23)
    paginator = Paginator(entities)

    page = await paginator.paginate("Discounts", MATCH_ALL, ("created_at", "asc"), page="3", limit="10")

    entities.find.assert_awaited_once_with(
        "Discounts",
        MATCH_ALL,
        sort=(("created_at", SortOrder.ASC),),
        skip=20,
        limit=10,
    )
    entities.count.assert_awaited_once_with("Discounts", MATCH_ALL)
    assert isinstance(page, Page)
    assert page.meta.current_page == 3
    assert page.meta.total_pages == 3
    assert page.to_dict()["meta"]["totalItems"] == 23
    assert page.to_dict()["items"] == [{"n": 1}, {"n": 2}]


async def test_paginate_page_beyond_last_is_empty_not_error():
    entities = MagicMock()
    entities.find = AsyncMock(return_value=[])
    entities.count = AsyncMock(return_value=5)
    paginator = Paginator(entities, default_limit=2, max_limit=3)

    page = await paginator.paginate("Discounts", MATCH_ALL, ("created_at", SortOrder.DESC), page=9)

    assert page.items == []
    assert page.meta.items_per_page == 2
    assert page.meta.total_pages == 3
    assert page.meta.has_next_page is False


async def test_paginate_applies_transform():
    entities = MagicMock()
    entities.find = AsyncMock(return_value=[{"n": 1}])
    entities.count = AsyncMock(return_value=1)

    async def _double(items):
        return [{"n": item["n"] * 2} for item in items]

    page = await Paginator(entities).paginate(
        "Discounts", MATCH_ALL, ("n", "desc"), transform=_double
    )
    assert page.items == [{"n": 2}]
