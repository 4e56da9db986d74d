"""Tests for Method, DuckModel, CRUDAccess, Entity and Gateway specs."""

from __future__ import annotations

from typing import Any, ClassVar

import pytest
from pydantic import BaseModel, ValidationError

from duck_api.core.schema import is_schema
from duck_api.specs.entity import CRUDAccess, DuckModel, Entity, Gateway, Method, MethodRouting


def verify(doc: dict[str, Any], payload: Any, ctx: Any) -> str:
    return "verified"


def allow(ctx: Any) -> bool:
    return True


class Address(BaseModel):
    _methods: ClassVar[dict[str, Any]] = {"verify": verify}

    street: str
    zip: str


class Person(BaseModel):
    name: str
    address: Address


class TestMethod:
    def test_bare_callable(self) -> None:
        method = Method.coerce(verify)
        assert method.handler is verify
        assert method.verb == "post"
        assert method.input is False
        assert method.output is False

    def test_input_mapping_becomes_schema(self) -> None:
        method = Method(handler=verify, input={"level": (int | None, None)})
        assert is_schema(method.input)

    def test_none_input_means_no_input(self) -> None:
        assert Method(handler=verify, input=None).input is False

    def test_unknown_verb(self) -> None:
        with pytest.raises(ValidationError):
            Method(handler=verify, verb="put")

    def test_routing_accepts_validate_alias(self) -> None:
        routing = MethodRouting.model_validate({"validate": allow})
        assert routing.validator is allow
        method = Method(handler=verify, router={"validate": allow, "input": {"x": int}})
        assert method.router is not None
        assert is_schema(method.router.input)

    def test_coerce_keeps_instances(self) -> None:
        method = Method(handler=verify)
        assert Method.coerce(method) is method


class TestDuckModel:
    def test_mapping_with_schema_is_wrapped(self) -> None:
        model = DuckModel.coerce({"schema": {"name": str}, "methods": {"clean": verify}})
        assert is_schema(model.schema)
        assert model.methods["clean"].handler is verify

    def test_anything_else_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid model"):
            DuckModel.coerce({"name": str})

    def test_methods_at_nested_path(self) -> None:
        model = DuckModel(Person)
        assert list(model.methods_at("address")) == ["verify"]
        assert model.methods_at("") == {}

    def test_iter_methods_depth_first(self) -> None:
        model = DuckModel(Person, {"touch": verify})
        assert [(path, list(methods)) for path, methods in model.iter_methods()] == [
            ("", ["touch"]),
            ("address", ["verify"]),
        ]


class TestCRUDAccess:
    def test_callable_is_broadcast(self) -> None:
        access = CRUDAccess.model_validate(allow)
        for key in ("create", "read", "update", "delete", "list"):
            assert getattr(access, key) is allow

    def test_none_means_unrestricted(self) -> None:
        access = CRUDAccess.model_validate(None)
        assert access.read is None


class TestEntity:
    def test_path_and_name_derive_from_file(self) -> None:
        entity = Entity.model_validate(
            {"file": "user-profile.py", "model": {"schema": {"name": str}}}
        )
        assert entity.path == "/user-profile"
        assert entity.name == "User Profile"

    def test_explicit_path_wins(self) -> None:
        entity = Entity.model_validate(
            {"file": "user.py", "path": "/people/", "duckModel": {"schema": {"name": str}}}
        )
        assert entity.path == "/people"
        assert entity.name == "People"

    def test_model_is_required(self) -> None:
        with pytest.raises(ValidationError):
            Entity.model_validate({"path": "/user"})

    def test_invalid_model(self) -> None:
        with pytest.raises(ValidationError, match="Invalid model"):
            Entity.model_validate({"path": "/user", "model": {"name": str}})

    def test_unknown_keys_are_ignored(self) -> None:
        entity = Entity.model_validate(
            {"path": "/user", "model": {"schema": {"name": str}}, "color": "blue"}
        )
        assert entity.name == "User"

    def test_delivery_rule(self) -> None:
        entity = Entity.model_validate(
            {"path": "/user", "model": {"schema": {"name": str}}, "delivery": ["staff"]}
        )
        assert entity.delivery == ["staff"]
        plain = Entity.model_validate({"path": "/user", "model": {"schema": {"name": str}}})
        assert plain.delivery is None

    def test_access_broadcast(self) -> None:
        entity = Entity.model_validate(
            {"path": "/user", "model": {"schema": {"name": str}}, "access": allow}
        )
        assert entity.access.list is allow


class TestGateway:
    def test_methods_are_parsed(self) -> None:
        gateway = Gateway.model_validate({"name": "mailer", "methods": {"send": verify}})
        assert gateway.methods["send"].handler is verify
