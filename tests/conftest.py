"""Shared fixtures for the docrel test suite.

Most tests run against ``MemoryDocumentStore`` with a small registry that
mirrors a typical deployment: users, business branches, discounts that
point at a branch and carry a unique code, and campaigns with a to-many
branch reference.
"""

from __future__ import annotations

import shutil
from collections.abc import AsyncIterator

import pytest

from docrel.app import Docrel
from docrel.model import (
    CodeSpec,
    EntityDefinition,
    FieldKind,
    FilterField,
    RelationDescriptor,
    audit_relations,
)
from docrel.store.memory import MemoryDocumentStore

docker_available = shutil.which("docker") is not None


def make_definitions() -> list[EntityDefinition]:
    return [
        EntityDefinition(
            name="User",
            id_field="user_id",
            search_fields=("firstName", "lastName"),
        ),
        EntityDefinition(
            name="Business_Branch",
            id_field="business_Branch_id",
            search_fields=("BusinessName", "Address"),
            relations=audit_relations(),
        ),
        EntityDefinition(
            name="Discounts",
            id_field="Discounts_id",
            search_fields=("name", "Description"),
            filters=(
                FilterField("business_Branch_id", "business_Branch_id", FieldKind.INTEGER),
                FilterField("percentage", "CouponType.percentage", FieldKind.NUMBER),
                FilterField("from", "created_at", FieldKind.DATE_FROM),
                FilterField("to", "created_at", FieldKind.DATE_TO),
            ),
            relations=(
                RelationDescriptor(
                    "business_Branch_id",
                    "Business_Branch",
                    ("BusinessName", "Address"),
                    must_exist=True,
                ),
                *audit_relations(),
            ),
            code=CodeSpec("code"),
        ),
        EntityDefinition(
            name="Campaign",
            id_field="Campaign_id",
            search_fields=("title",),
            filters=(FilterField("branch", "branch_ids", FieldKind.INTEGER),),
            relations=(
                RelationDescriptor(
                    "branch_ids",
                    "Business_Branch",
                    ("BusinessName",),
                    many=True,
                    must_exist=True,
                ),
            ),
        ),
    ]


@pytest.fixture
def definitions() -> list[EntityDefinition]:
    return make_definitions()


@pytest.fixture
def memory_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
async def docrel(memory_store: MemoryDocumentStore, definitions) -> AsyncIterator[Docrel]:
    """A started ``Docrel`` over an empty memory store."""
    app = Docrel(memory_store, definitions)
    await app.start()
    yield app
    await app.close()


@pytest.fixture
async def branch(docrel: Docrel) -> dict:
    """One active business branch created by user 1."""
    return await docrel.service("Business_Branch").create(
        {"BusinessName": "Corner Cafe", "Address": "1 Main St", "Phone": "555"},
        actor_id=1,
    )
