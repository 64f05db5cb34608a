"""Tests for docrel.filters — predicate tree and in-process evaluation."""

from __future__ import annotations

import pytest

from docrel.filters import (
    MATCH_ALL,
    AllOf,
    AnyOf,
    Eq,
    In,
    Match,
    Range,
    and_,
    is_missing,
    lookup,
    matches,
)

pytestmark = pytest.mark.unit


DOC = {
    "name": "Spring Sale",
    "Status": True,
    "count": 3,
    "tags": [1, 2, 5],
    "CouponType": {"name": "percent", "percentage": 15},
    "created_at": "2026-03-01T10:00:00.000000+00:00",
    "note": None,
}


def test_and_flattens_and_skips_none():
    nested = and_(Eq("a", 1), AllOf((Eq("b", 2), Eq("c", 3))), None)
    assert nested == AllOf((Eq("a", 1), Eq("b", 2), Eq("c", 3)))


def test_and_single_clause_is_unwrapped():
    assert and_(Eq("a", 1)) == Eq("a", 1)
    assert and_() == MATCH_ALL


def test_lookup_dotted_path_and_missing():
    assert lookup(DOC, "CouponType.percentage") == 15
    assert is_missing(lookup(DOC, "CouponType.missing"))
    assert is_missing(lookup(DOC, "name.inner"))


def test_match_all_matches_everything():
    assert matches(MATCH_ALL, DOC)
    assert matches(MATCH_ALL, {})


def test_eq_scalar_and_array_membership():
    assert matches(Eq("count", 3), DOC)
    assert not matches(Eq("count", 4), DOC)
    assert matches(Eq("tags", 5), DOC)
    assert not matches(Eq("tags", 7), DOC)


def test_eq_bool_never_equals_int():
    assert matches(Eq("Status", True), DOC)
    assert not matches(Eq("Status", 1), DOC)
    assert not matches(Eq("count", True), {"count": 1})


def test_eq_none_matches_null_or_missing():
    assert matches(Eq("note", None), DOC)
    assert matches(Eq("absent", None), DOC)
    assert not matches(Eq("name", None), DOC)


def test_in_matches_any_value_and_empty_never_matches():
    assert matches(In("count", (1, 3)), DOC)
    assert matches(In("tags", (9, 2)), DOC)
    assert not matches(In("count", ()), DOC)


def test_match_is_case_insensitive_literal_substring():
    assert matches(Match("name", "spring"), DOC)
    assert matches(Match("name", "SALE"), DOC)
    assert not matches(Match("name", "spr.ng"), DOC)
    assert not matches(Match("count", "3"), DOC)


def test_range_inclusive_bounds_on_strings_and_numbers():
    assert matches(Range("created_at", gte="2026-03-01T10:00:00.000000+00:00"), DOC)
    assert matches(Range("created_at", lte="2026-03-01T10:00:00.000000+00:00"), DOC)
    assert not matches(Range("created_at", gte="2026-03-02"), DOC)
    assert matches(Range("CouponType.percentage", gte=10, lte=15), DOC)
    assert not matches(Range("CouponType.percentage", gte="10"), DOC)
    assert not matches(Range("absent", gte=0), DOC)


def test_any_of_and_all_of():
    either = AnyOf((Match("name", "winter"), Match("name", "spring")))
    assert matches(either, DOC)
    assert not matches(AnyOf(()), DOC)
    assert not matches(AllOf((either, Eq("Status", False))), DOC)


def test_unknown_clause_type_raises():
    with pytest.raises(TypeError):
        matches("name = 1", DOC)  # type: ignore[arg-type]
