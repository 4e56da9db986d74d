"""Tests for the schema toolkit."""

from __future__ import annotations

from typing import Any, ClassVar

import pytest
from pydantic import BaseModel, ConfigDict, Field, field_validator

from duck_api.core.errors import ConfigurationError, ValidationError
from duck_api.core.schema import (
    array_of,
    ensure_schema,
    field_path,
    iter_schema_methods,
    own_paths,
    parse_value,
    schema_at_path,
    schema_methods,
    weaken_schema,
)


def verify(doc: dict[str, Any], payload: Any, ctx: Any) -> None:
    doc["verified"] = True


class Address(BaseModel):
    _methods: ClassVar[dict[str, Any]] = {"verify": verify}

    street: str
    zip: str = "00000"
    verified: bool = False


class User(BaseModel):
    name: str
    age: int = Field(ge=0)
    address: Address


class Contact(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str

    @field_validator("email")
    @classmethod
    def must_have_at(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("not an email address")
        return value


class Node(BaseModel):
    _methods: ClassVar[dict[str, Any]] = {"verify": verify}

    name: str
    geo_point: Address | None = None
    parent: Node | None = None


class TestEnsureSchema:
    def test_model_passes_through(self) -> None:
        assert ensure_schema(User) is User

    def test_field_mapping(self) -> None:
        schema = ensure_schema({"name": str, "age": (int, 0), "geo": {"lat": float}}, "Place")
        place = schema(name="home", geo={"lat": 1.5})
        assert place.age == 0
        assert place.geo.lat == 1.5
        assert schema.__name__ == "Place"

    def test_methods_key_is_attached(self) -> None:
        schema = ensure_schema({"name": str, "_methods": {"verify": verify}})
        assert schema_methods(schema) == {"verify": verify}

    def test_invalid_schema(self) -> None:
        with pytest.raises(ConfigurationError):
            ensure_schema(42)


class TestWeakenSchema:
    def test_every_field_becomes_optional(self) -> None:
        partial = weaken_schema(User)
        assert parse_value(partial, {}) == {}

    def test_only_sent_keys_are_kept(self) -> None:
        partial = weaken_schema(User)
        assert parse_value(partial, {"address": {"zip": "1"}}) == {"address": {"zip": "1"}}

    def test_constraints_survive(self) -> None:
        partial = weaken_schema(User)
        with pytest.raises(ValidationError):
            parse_value(partial, {"age": -1})

    def test_original_is_untouched(self) -> None:
        weaken_schema(User)
        with pytest.raises(ValidationError):
            parse_value(User, {"name": "Ann"})
        assert User.model_fields["name"].is_required()
        assert Address.model_fields["street"].is_required()

    def test_clones_are_independent(self) -> None:
        assert weaken_schema(User) is not weaken_schema(User)

    def test_field_validators_still_run(self) -> None:
        partial = weaken_schema(Contact)
        assert parse_value(partial, {"email": "ann@example.com"}) == {"email": "ann@example.com"}
        with pytest.raises(ValidationError):
            parse_value(partial, {"email": "nope"})

    def test_model_config_is_kept(self) -> None:
        with pytest.raises(ValidationError):
            parse_value(weaken_schema(Contact), {"nickname": "ann"})

    def test_self_reference(self) -> None:
        partial = weaken_schema(Node)
        value = parse_value(partial, {"parent": {"parent": {"name": "root"}}})
        assert value == {"parent": {"parent": {"name": "root"}}}
        assert parse_value(partial, {"parent": None}) == {"parent": None}

    def test_required_nested_rejects_null(self) -> None:
        with pytest.raises(ValidationError):
            parse_value(weaken_schema(User), {"address": None})


class TestIntrospection:
    def test_own_paths(self) -> None:
        assert own_paths(User) == ["address"]

    def test_schema_at_path(self) -> None:
        assert schema_at_path(User, "address") is Address
        assert schema_at_path(User, "") is User
        with pytest.raises(ConfigurationError):
            schema_at_path(User, "name")

    def test_iter_schema_methods(self) -> None:
        assert [path for path, _ in iter_schema_methods(User)] == ["address"]

    def test_iter_schema_methods_stops_at_self_reference(self) -> None:
        assert [path for path, _ in iter_schema_methods(Node)] == ["", "geo_point"]

    def test_field_path(self) -> None:
        assert field_path(Node, "") == ""
        assert field_path(Node, "geo-point") == "geo_point"
        assert field_path(Node, "parent/geo-point") == "parent.geo_point"
        assert field_path(User, "address") == "address"
        with pytest.raises(ConfigurationError):
            field_path(User, "name")

    def test_array_of(self) -> None:
        assert array_of(User) == list[User]


class TestParseValue:
    def test_returns_plain_data(self) -> None:
        parsed = parse_value(User, {"name": "Ann", "age": "3", "address": {"street": "Main"}})
        assert parsed == {
            "name": "Ann",
            "age": 3,
            "address": {"street": "Main", "zip": "00000", "verified": False},
        }

    def test_errors_name_fields(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_value(User, {"name": "Ann", "age": 1, "address": {}})
        assert exc_info.value.code == 400
        assert [error.field for error in exc_info.value.errors] == ["address.street"]

    def test_none_is_empty_input(self) -> None:
        assert parse_value(weaken_schema(User), None) == {}
