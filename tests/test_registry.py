"""Tests for docrel.registry."""

from __future__ import annotations

import pytest

from docrel.errors import ConfigError, UnknownEntityError
from docrel.model import CodeSpec, EntityDefinition, FieldKind, FilterField, RelationDescriptor
from docrel.registry import EntityRegistry

pytestmark = pytest.mark.unit


def test_register_is_idempotent_for_identical_definition(definitions):
    registry = EntityRegistry(definitions)
    again = EntityDefinition(name="User", id_field="user_id", search_fields=("firstName", "lastName"))
    assert registry.register(again) == registry.get("User")
    assert len(registry) == len(definitions)


def test_conflicting_registration_rejected(definitions):
    registry = EntityRegistry(definitions)
    with pytest.raises(ConfigError, match="already registered"):
        registry.register(EntityDefinition(name="User", id_field="uid"))


def test_unknown_entity():
    with pytest.raises(UnknownEntityError) as exc_info:
        EntityRegistry().get("Ghost")
    assert "Ghost" in str(exc_info.value)
    assert isinstance(exc_info.value, KeyError)


@pytest.mark.parametrize(
    "definition",
    [
        EntityDefinition(name="bad name", id_field="x_id"),
        EntityDefinition(name="A", id_field="a-id"),
        EntityDefinition(name="A", id_field="A_id", search_fields=("x..y",)),
        EntityDefinition(
            name="A",
            id_field="A_id",
            filters=(
                FilterField("p", "f", FieldKind.STRING),
                FilterField("p", "g", FieldKind.STRING),
            ),
        ),
        EntityDefinition(
            name="A",
            id_field="A_id",
            relations=(RelationDescriptor("b", "B"), RelationDescriptor("b", "C")),
        ),
        EntityDefinition(name="A", id_field="A_id", code=CodeSpec("code", length=0)),
    ],
)
def test_invalid_definitions(definition):
    with pytest.raises(ConfigError):
        EntityRegistry([definition])


def test_validate_requires_target_field_for_unregistered_target():
    registry = EntityRegistry(
        [EntityDefinition(name="A", id_field="A_id", relations=(RelationDescriptor("b", "B"),))]
    )
    with pytest.raises(ConfigError, match="unregistered"):
        registry.validate()


def test_target_field_and_collection(definitions):
    registry = EntityRegistry(definitions)
    relation = registry.get("Discounts").relation("business_Branch_id")
    assert registry.target_field(relation) == "business_Branch_id"
    assert registry.target_collection(relation) == "Business_Branch"
    assert registry.names() == ["Business_Branch", "Campaign", "Discounts", "User"]
    assert "Discounts" in registry


async def test_bootstrap_creates_unique_indexes(memory_store, definitions):
    registry = EntityRegistry(definitions)
    await registry.bootstrap(memory_store)
    assert memory_store._unique["Discounts"] == {"Discounts_id", "code"}
    assert memory_store._unique["User"] == {"user_id"}
