"""Tests for docrel.service — the create/get/list/update/soft-delete surface."""

from __future__ import annotations

from datetime import UTC, date, datetime
from unittest.mock import AsyncMock

import pytest

from docrel.app import Docrel
from docrel.errors import (
    EntityNotFoundError,
    ForeignKeyError,
    InvalidIdentifierError,
    MissingActorError,
    UnknownEntityError,
)
from docrel.identifiers import new_internal_id
from docrel.model import EntityDefinition, FieldKind, FilterField
from docrel.store.base import DuplicateKeyError
from docrel.store.memory import MemoryDocumentStore

pytestmark = pytest.mark.unit


# ------------------------------------------------------------------
# create
# ------------------------------------------------------------------


async def test_create_assigns_sequential_ids_and_populates(docrel, branch):
    discounts = docrel.service("Discounts")
    first = await discounts.create(
        {"name": "Spring", "business_Branch_id": branch["business_Branch_id"]}, actor_id=1
    )
    second = await discounts.create(
        {"name": "Summer", "business_Branch_id": str(branch["business_Branch_id"])}, actor_id=1
    )

    assert (first["Discounts_id"], second["Discounts_id"]) == (1, 2)
    assert first["business_Branch_id"]["BusinessName"] == "Corner Cafe"
    assert first["Status"] is True
    assert first["updated_by"] is None


async def test_create_mints_code_when_omitted(docrel, branch):
    discounts = docrel.service("Discounts")
    record = await discounts.create({"name": "A", "business_Branch_id": 1}, actor_id=1)
    assert len(record["code"]) == 10
    assert record["code"] == record["code"].upper()

    blank = await discounts.create({"name": "B", "code": "  ", "business_Branch_id": 1})
    assert len(blank["code"]) == 10


async def test_create_normalises_supplied_code(docrel, branch):
    record = await docrel.service("Discounts").create(
        {"name": "A", "code": " save10 ", "business_Branch_id": 1}
    )
    assert record["code"] == "SAVE10"


async def test_create_rejects_missing_reference(docrel, memory_store):
    with pytest.raises(ForeignKeyError):
        await docrel.service("Discounts").create({"name": "A", "business_Branch_id": 42})
    assert memory_store.counter_value("Discounts") == 0


async def test_create_rejects_inactive_reference(docrel, branch):
    await docrel.service("Business_Branch").soft_delete(branch["business_Branch_id"], actor_id=1)
    with pytest.raises(ForeignKeyError):
        await docrel.service("Discounts").create({"name": "A", "business_Branch_id": 1})


async def test_unknown_entity(docrel):
    with pytest.raises(UnknownEntityError):
        docrel.service("Nope")


# ------------------------------------------------------------------
# get_by_dual_key
# ------------------------------------------------------------------


async def test_dual_key_round_trip(docrel, branch):
    branches = docrel.service("Business_Branch")
    by_public = await branches.get_by_dual_key(str(branch["business_Branch_id"]))
    by_internal = await branches.get_by_dual_key(branch["_id"])
    assert by_public["_id"] == by_internal["_id"] == branch["_id"]


async def test_get_populates_audit_user(docrel):
    user = await docrel.service("User").create({"firstName": "Ada", "password": "x"})
    created = await docrel.service("Business_Branch").create(
        {"BusinessName": "Shop"}, actor_id=user["user_id"]
    )
    fetched = await docrel.service("Business_Branch").get_by_dual_key(
        created["business_Branch_id"]
    )
    assert fetched["created_by"]["firstName"] == "Ada"
    assert "password" not in fetched["created_by"]


async def test_get_invalid_identifier_does_not_query(docrel):
    branches = docrel.service("Business_Branch")
    docrel.entities.find_one = AsyncMock()
    with pytest.raises(InvalidIdentifierError):
        await branches.get_by_dual_key("abc")
    docrel.entities.find_one.assert_not_awaited()


async def test_get_missing_is_not_found(docrel, branch):
    branches = docrel.service("Business_Branch")
    with pytest.raises(EntityNotFoundError):
        await branches.get_by_dual_key(999)
    with pytest.raises(EntityNotFoundError):
        await branches.get_by_dual_key(new_internal_id())


async def test_get_returns_soft_deleted_record(docrel, branch):
    branches = docrel.service("Business_Branch")
    await branches.soft_delete(branch["_id"], actor_id=2)
    fetched = await branches.get_by_dual_key(branch["business_Branch_id"])
    assert fetched["Status"] is False


async def test_owner_scoped_get(docrel, branch):
    branches = docrel.service("Business_Branch")
    assert (await branches.get_by_dual_key(1, owner_id=1))["_id"] == branch["_id"]
    with pytest.raises(EntityNotFoundError):
        await branches.get_by_dual_key(1, owner_id=2)


async def test_get_without_population(docrel, branch):
    discounts = docrel.service("Discounts")
    await discounts.create({"name": "A", "business_Branch_id": 1})
    raw = await discounts.get_by_dual_key(1, populate=False)
    assert raw["business_Branch_id"] == 1


# ------------------------------------------------------------------
# list / list_by_actor
# ------------------------------------------------------------------


async def _seed_discounts(docrel, count, actor_id=1):
    discounts = docrel.service("Discounts")
    for i in range(count):
        await discounts.create(
            {"name": f"Deal {i}", "Description": "weekly", "business_Branch_id": 1},
            actor_id=actor_id,
        )


async def test_list_pagination(docrel, branch):
    await _seed_discounts(docrel, 23)
    page = await docrel.service("Discounts").list({}, page=3, limit=10)

    assert len(page.items) == 3
    meta = page.to_dict()["meta"]
    assert meta == {
        "currentPage": 3,
        "totalPages": 3,
        "totalItems": 23,
        "itemsPerPage": 10,
        "hasNextPage": False,
        "hasPrevPage": True,
    }


async def test_list_default_sort_is_newest_first(docrel, branch):
    await _seed_discounts(docrel, 3)
    page = await docrel.service("Discounts").list()
    stamps = [r["created_at"] for r in page.items]
    assert stamps == sorted(stamps, reverse=True)
    asc = await docrel.service("Discounts").list(sort_by="Discounts_id", sort_order="asc")
    assert [r["Discounts_id"] for r in asc.items] == [1, 2, 3]


async def test_list_empty(docrel):
    page = await docrel.service("Discounts").list({"search": "nothing"})
    assert page.items == []
    assert page.meta.total_pages == 1


async def test_list_status_visibility(docrel, branch):
    await _seed_discounts(docrel, 3)
    discounts = docrel.service("Discounts")
    await discounts.soft_delete(2, actor_id=1)

    everything = await discounts.list()
    active = await discounts.list({"status": "true"})
    inactive = await discounts.list({"status": "false"})

    assert everything.meta.total_items == 3
    assert sorted(r["Discounts_id"] for r in active.items) == [1, 3]
    assert [r["Discounts_id"] for r in inactive.items] == [2]


async def test_list_search_and_filters(docrel, branch):
    await _seed_discounts(docrel, 2)
    discounts = docrel.service("Discounts")
    await discounts.create(
        {"name": "Mega SALE", "business_Branch_id": 1, "CouponType": {"percentage": 20}}
    )

    found = await discounts.list({"search": "sale"})
    assert [r["name"] for r in found.items] == ["Mega SALE"]
    by_percentage = await discounts.list({"percentage": "20"})
    assert by_percentage.meta.total_items == 1
    by_branch = await discounts.list({"business_Branch_id": "1"})
    assert by_branch.meta.total_items == 3
    malformed = await discounts.list({"business_Branch_id": "abc"})
    assert malformed.meta.total_items == 3


async def test_list_populates_items(docrel, branch):
    await _seed_discounts(docrel, 2)
    page = await docrel.service("Discounts").list()
    assert all(r["business_Branch_id"]["BusinessName"] == "Corner Cafe" for r in page.items)


async def test_list_to_many_filter(docrel, branch):
    second = await docrel.service("Business_Branch").create({"BusinessName": "Deli"})
    campaigns = docrel.service("Campaign")
    await campaigns.create({"title": "Both", "branch_ids": [1, second["business_Branch_id"]]})
    await campaigns.create({"title": "Only first", "branch_ids": [1]})

    page = await campaigns.list({"branch": str(second["business_Branch_id"])})
    assert [r["title"] for r in page.items] == ["Both"]
    assert [b["BusinessName"] for b in page.items[0]["branch_ids"]] == ["Corner Cafe", "Deli"]


async def test_list_by_actor(docrel, branch):
    await _seed_discounts(docrel, 2, actor_id=1)
    await _seed_discounts(docrel, 3, actor_id=2)
    discounts = docrel.service("Discounts")

    mine = await discounts.list_by_actor(2)
    assert mine.meta.total_items == 3
    assert all(r["created_by"] == 2 for r in mine.items)

    with pytest.raises(MissingActorError):
        await discounts.list_by_actor(None)


# ------------------------------------------------------------------
# update / soft_delete
# ------------------------------------------------------------------


async def test_update_by_either_key(docrel, branch):
    branches = docrel.service("Business_Branch")
    updated = await branches.update(branch["_id"], {"Address": "2 Side St"}, actor_id=3)
    assert updated["Address"] == "2 Side St"
    assert updated["updated_by"] == 3
    updated = await branches.update("1", {"Phone": "777"}, actor_id=4)
    assert updated["Phone"] == "777"
    assert updated["updated_by"] == 4


async def test_update_cannot_change_protected_fields(docrel, branch):
    branches = docrel.service("Business_Branch")
    updated = await branches.update(
        1,
        {"business_Branch_id": 50, "_id": new_internal_id(), "created_by": 9, "created_at": "x"},
        actor_id=3,
    )
    assert updated["business_Branch_id"] == 1
    assert updated["_id"] == branch["_id"]
    assert updated["created_at"] == branch["created_at"]


async def test_update_validates_references_in_patch(docrel, branch):
    discounts = docrel.service("Discounts")
    await discounts.create({"name": "A", "business_Branch_id": 1})
    with pytest.raises(ForeignKeyError):
        await discounts.update(1, {"business_Branch_id": 77})
    # fields absent from the patch are not re-checked
    await docrel.service("Business_Branch").soft_delete(1)
    updated = await discounts.update(1, {"name": "B"})
    assert updated["name"] == "B"


async def test_update_code_is_normalised(docrel, branch):
    discounts = docrel.service("Discounts")
    created = await discounts.create({"name": "A", "business_Branch_id": 1})
    updated = await discounts.update(1, {"code": " new1 "})
    assert updated["code"] == "NEW1"
    unchanged = await discounts.update(1, {"code": ""})
    assert unchanged["code"] == "NEW1"
    assert created["code"] != "NEW1"


async def test_update_to_taken_code_is_rejected(docrel, branch):
    discounts = docrel.service("Discounts")
    await discounts.create({"name": "A", "code": "AAA", "business_Branch_id": 1})
    await discounts.create({"name": "B", "code": "BBB", "business_Branch_id": 1})
    with pytest.raises(DuplicateKeyError):
        await discounts.update(2, {"code": "aaa"})
    assert (await discounts.get_by_dual_key(2))["code"] == "BBB"


async def test_update_missing_and_invalid(docrel):
    users = docrel.service("User")
    with pytest.raises(EntityNotFoundError):
        await users.update(5, {"firstName": "x"})
    with pytest.raises(InvalidIdentifierError):
        await users.update("bad-id", {"firstName": "x"})


async def test_soft_delete_stamps_audit_and_keeps_record(docrel, branch):
    branches = docrel.service("Business_Branch")
    deleted = await branches.soft_delete(1, actor_id=8)
    assert deleted["Status"] is False
    assert deleted["updated_by"] == 8
    assert deleted["updated_at"] >= branch["updated_at"]

    page = await branches.list()
    assert page.meta.total_items == 1


async def test_soft_delete_missing_and_invalid(docrel):
    users = docrel.service("User")
    with pytest.raises(EntityNotFoundError):
        await users.soft_delete(12)
    with pytest.raises(InvalidIdentifierError):
        await users.soft_delete("1.5")


async def test_update_missing_target_wins_over_dangling_reference(docrel, branch):
    with pytest.raises(EntityNotFoundError):
        await docrel.service("Discounts").update(40, {"business_Branch_id": 77})


# ------------------------------------------------------------------
# date-range filters
# ------------------------------------------------------------------


@pytest.fixture
async def promos():
    definition = EntityDefinition(
        name="Promo",
        id_field="Promo_id",
        filters=(
            FilterField("from", "StartDate", FieldKind.DATE_FROM),
            FilterField("to", "EndDate", FieldKind.DATE_TO),
        ),
    )
    async with Docrel(MemoryDocumentStore(), [definition]) as app:
        yield app.service("Promo")


async def test_date_range_matches_native_and_date_only_values(promos):
    await promos.create(
        {"StartDate": datetime(2026, 3, 10, tzinfo=UTC), "EndDate": date(2026, 3, 31)}
    )
    await promos.create({"StartDate": "2026-03-01", "EndDate": "2026-03-31"})
    await promos.create({"StartDate": "2026-02-28", "EndDate": "2026-04-01"})

    page = await promos.list(
        {"from": "2026-03-01", "to": "2026-03-31"}, sort_by="Promo_id", sort_order="asc"
    )
    assert [r["Promo_id"] for r in page.items] == [1, 2]
    assert page.items[0]["StartDate"] == "2026-03-10T00:00:00.000000+00:00"
    assert page.items[1]["EndDate"] == "2026-03-31T00:00:00.000000+00:00"


async def test_date_range_applies_to_updated_values(promos):
    await promos.create({"StartDate": "2026-01-01"})
    await promos.update(1, {"StartDate": datetime(2026, 3, 1, 9, 30)})
    page = await promos.list({"from": "2026-03-01"})
    assert page.meta.total_items == 1
    assert page.items[0]["StartDate"] == "2026-03-01T09:30:00.000000+00:00"
