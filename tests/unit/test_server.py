"""Tests for application assembly, end to end through the HTTP boundary."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from duck_api.core.config import ApiConfig, load_config
from duck_api.core.errors import ConfigurationError
from duck_api.runtime.context import RequestContext
from duck_api.runtime.server import DuckApiApp, PluginContext, create_app, rack_name
from duck_api.runtime.storage import DuckStorage
from duck_api.specs.entity import Entity

USER = {"path": "/user", "model": {"schema": {"name": str, "email": str}}}


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(ApiConfig(with_swagger=True), entities=[USER]))


@pytest.fixture
def app_test_client(app_test_dir: Path) -> TestClient:
    app = create_app(load_config(app_test_dir))
    return TestClient(app, raise_server_exceptions=False)


class TestRackName:
    @pytest.mark.parametrize(
        ("path", "expected"), [("/user", "user"), ("/billing/invoice", "billing.invoice")]
    )
    def test_rack_name(self, path: str, expected: str) -> None:
        entity = Entity.model_validate({"path": path, "model": {"schema": {"name": str}}})
        assert rack_name(entity) == expected


class TestEntityEndpoints:
    def test_create_then_read(self, client: TestClient) -> None:
        response = client.post("/domain/user", json={"name": "A", "email": "a@x.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 200
        assert body["data"]["name"] == "A"
        assert body["data"]["email"] == "a@x.com"

        doc_id = body["data"]["_id"]
        read = client.get(f"/domain/user/{doc_id}")
        assert read.json()["data"] == body["data"]

    def test_create_validates(self, client: TestClient) -> None:
        response = client.post("/domain/user", json={"name": "A"})
        assert response.status_code == 400
        assert response.json()["error"]["errors"][0]["field"] == "email"

    def test_missing_document_is_404(self, client: TestClient) -> None:
        response = client.get("/domain/user/does-not-exist")
        assert response.status_code == 404
        assert response.json()["code"] == 404

    def test_bulk_update_uses_the_weakened_schema(self, client: TestClient) -> None:
        client.post("/domain/user", json={"name": "A", "email": "a@x.com"})
        client.post("/domain/user", json={"name": "B", "email": "b@x.com"})

        response = client.patch(
            "/domain/user",
            params={"query": json.dumps({"name": "A"})},
            json={"email": "z@x.com"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [(doc["name"], doc["email"]) for doc in data] == [("A", "z@x.com")]

    def test_list_with_query_and_sort(self, client: TestClient) -> None:
        for name in ("B", "A", "C"):
            client.post("/domain/user", json={"name": name, "email": f"{name}@x.com"})

        everything = client.get("/domain/user", params={"sort": "-name"}).json()["data"]
        assert [doc["name"] for doc in everything] == ["C", "B", "A"]

        some = client.get("/domain/user", params={"query": json.dumps({"name": "A"})})
        assert [doc["name"] for doc in some.json()["data"]] == ["A"]

    def test_empty_list_is_not_a_404(self, client: TestClient) -> None:
        response = client.get("/domain/user")
        assert response.status_code == 200
        assert response.json()["data"] == []

    def test_item_update_and_delete(self, client: TestClient) -> None:
        created = client.post("/domain/user", json={"name": "A", "email": "a@x.com"}).json()
        doc_id = created["data"]["_id"]

        updated = client.patch(f"/domain/user/{doc_id}", json={"name": "B"}).json()["data"]
        assert updated["name"] == "B"
        assert updated["_v"] == 2

        deleted = client.delete(f"/domain/user/{doc_id}")
        assert deleted.json()["data"]["_id"] == doc_id
        assert client.delete(f"/domain/user/{doc_id}").status_code == 404

    def test_domain_index_lists_schemas(self, client: TestClient) -> None:
        response = client.get("/domain/")
        assert response.status_code == 200
        assert set(response.json()["data"]["user"]["properties"]) == {"name", "email"}

    def test_unknown_path(self, client: TestClient) -> None:
        response = client.get("/nowhere")
        assert response.status_code == 404
        assert response.json() == {"code": 404, "error": {"message": "Not Found"}}

    def test_swagger(self, client: TestClient) -> None:
        document = client.get("/domain/swagger.json").json()
        assert document["info"]["title"] == "duck-api"
        assert document["servers"][0]["url"] == "/domain"
        assert "/user/{id}" in document["paths"]
        assert "text/html" in client.get("/domain/docs").headers["content-type"]

    def test_swagger_can_be_disabled(self) -> None:
        client = TestClient(create_app(ApiConfig(with_swagger=False), entities=[USER]))
        assert client.get("/domain/swagger.json").status_code == 404


class TestMethods:
    def test_rack_and_schema_methods(self) -> None:
        def find_papo(payload: Any, ctx: Any) -> str:
            return "hey-yo sandy"

        def clean(doc: dict[str, Any], payload: Any, ctx: Any) -> str:
            return f"Just cleaned {doc['_id']} / {doc['name']}"

        entity = {
            "path": "/user",
            "model": {"schema": {"name": str}, "methods": {"clean": clean}},
            "methods": {"findPapo": find_papo},
        }
        client = TestClient(create_app(entities=[entity]))

        assert client.post("/domain/user/find-papo", json={}).json()["data"] == "hey-yo sandy"

        doc_id = client.post("/domain/user", json={"name": "A"}).json()["data"]["_id"]
        response = client.post(f"/domain/user/{doc_id}/clean", json={})
        assert response.json()["data"] == f"Just cleaned {doc_id} / A"

    def test_method_version_conflict(self) -> None:
        def touch(doc: dict[str, Any], payload: Any, ctx: Any) -> None:
            return None

        entity = {"path": "/user", "model": {"schema": {"name": str}, "methods": {"touch": touch}}}
        client = TestClient(create_app(entities=[entity]))
        doc_id = client.post("/domain/user", json={"name": "A"}).json()["data"]["_id"]

        assert client.post(f"/domain/user/{doc_id}/touch", params={"_v": 1}).status_code == 200
        assert client.post(f"/domain/user/{doc_id}/touch", params={"_v": 1}).status_code == 409

    def test_methods_resolve_other_racks(self) -> None:
        def count_users(payload: Any, ctx: Any) -> int:
            return len(ctx.resolve("rack", "UserRack"))

        entities = [
            {"path": "/user", "model": {"schema": {"name": str}}},
            {"path": "/stats", "model": {"schema": {"n": int}}, "methods": {"count": count_users}},
        ]
        client = TestClient(create_app(entities=entities))
        client.post("/domain/user", json={"name": "A"})

        assert client.post("/domain/stats/count", json={}).json()["data"] == 1


class TestRoutesAndGateways:
    def test_route_tree(self) -> None:
        def read_me(ctx: RequestContext) -> None:
            ctx.response = "me"

        def read_user(ctx: RequestContext) -> None:
            ctx.response = f"user {ctx.params['id']}"

        tree = {"users": {"_id": {"read": read_user}, "me": {"read": read_me}}}
        client = TestClient(create_app(routes=tree))

        assert client.get("/users/me").json()["data"] == "me"
        assert client.get("/users/7").json()["data"] == "user 7"

    def test_route_declining_a_domain_url_falls_through(self) -> None:
        def skip(ctx: RequestContext) -> None:
            return None

        tree = {"_a": {"_b": {"read": skip}}}
        client = TestClient(create_app(entities=[USER], routes=tree))
        client.post("/domain/user", json={"name": "A", "email": "a@x.com"})

        response = client.get("/domain/user")

        assert response.status_code == 200
        assert [doc["name"] for doc in response.json()["data"]] == ["A"]

    def test_gateway(self) -> None:
        def send_welcome(payload: Any, ctx: Any) -> dict[str, Any]:
            return {"sent": payload["to"]}

        gateway = {
            "name": "mailer",
            "methods": {"sendWelcome": {"input": {"to": str}, "handler": send_welcome}},
        }
        client = TestClient(create_app(gateways=[gateway]))

        response = client.post("/gateways/mailer/send-welcome", json={"to": "a@x.com"})
        assert response.json()["data"] == {"sent": "a@x.com"}
        assert client.post("/gateways/mailer/send-welcome", json={}).status_code == 400


class TestPlugins:
    def test_plugin_receives_context_and_returns_endpoints(self) -> None:
        seen: list[PluginContext] = []

        def ping(ctx: RequestContext) -> None:
            ctx.response = "pong"

        def plugin(context: PluginContext) -> list[dict[str, Any]]:
            seen.append(context)
            return [{"path": "/ping", "read": ping}]

        storage = DuckStorage()
        client = TestClient(create_app(storage=storage, plugins=[plugin]))

        assert client.get("/plugins/ping").json()["data"] == "pong"
        assert seen[0].storage is storage
        assert seen[0].router.prefix == "/plugins"

    def test_async_plugin_is_rejected(self) -> None:
        async def plugin(context: PluginContext) -> None:
            return None

        with pytest.raises(ConfigurationError, match="synchronous"):
            create_app(plugins=[plugin])

    def test_invalid_plugin_endpoint(self) -> None:
        with pytest.raises(ConfigurationError, match="plugin endpoint"):
            create_app(plugins=[lambda context: [{"path": "nope"}]])

    def test_jwt_secret_installs_jwt_access(self) -> None:
        client = TestClient(create_app(ApiConfig(jwt_secret="s3cret"), entities=[USER]))
        response = client.get("/domain/user", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401


class TestBuilder:
    def test_app_requires_build(self) -> None:
        with pytest.raises(RuntimeError):
            DuckApiApp().app

    def test_state_and_bindings(self) -> None:
        builder = DuckApiApp(entities=[USER])
        app = builder.build()

        assert app.state.duck_api is builder
        assert app.state.storage.get_rack("user") is not None
        assert ("POST", "/domain/user", "creates User") in builder.bindings()
        assert ("GET", "/domain/", "lists entity schemas") in builder.bindings()

    def test_existing_rack_is_reused(self) -> None:
        storage = DuckStorage()
        rack = storage.create_rack("user", {"schema": {"name": str, "email": str}})
        DuckApiApp(storage=storage, entities=[USER]).build()
        assert storage.get_rack("user") is rack

    def test_entity_delivery_rule(self) -> None:
        builder = DuckApiApp(entities=[{**USER, "delivery": False}])
        builder.build()
        assert builder.hub.delivery == {"user": False}

    def test_delivery_argument_wins_over_entity_rule(self) -> None:
        builder = DuckApiApp(
            entities=[{**USER, "delivery": False}], delivery={"user": ["admins"]}
        )
        builder.build()
        assert builder.hub.delivery == {"user": ["admins"]}

    def test_invalid_entity(self) -> None:
        with pytest.raises(ConfigurationError):
            create_app(entities=[{"path": "/user"}])


class TestAppFromDirectories:
    def test_routes(self, app_test_client: TestClient) -> None:
        assert app_test_client.get("/sandy", params={"q": "duck"}).json()["data"] == (
            "Amazing duck"
        )
        assert app_test_client.get("/sandy/x").json()["data"] == "hi id x"
        assert app_test_client.post("/user", json={}).json()["data"] == "ñaca"
        assert app_test_client.get("/user", params={"name": "Ann"}).json()["data"] == {
            "get": {"name": "Ann"}
        }

    def test_route_handler_error_is_500(self, app_test_client: TestClient) -> None:
        response = app_test_client.delete("/sandy/x")
        assert response.status_code == 500
        assert response.json()["code"] == 500

    def test_lib_and_test_modules_are_skipped(self, app_test_dir: Path) -> None:
        builder = DuckApiApp(load_config(app_test_dir))
        builder.build()
        paths = [path for _, path, _ in builder.bindings()]
        assert not any("lib" in path or "test" in path for path in paths)

    def test_entities_and_gateways(self, app_test_client: TestClient) -> None:
        doc = app_test_client.post("/domain/user", json={"name": "Ann"}).json()["data"]
        assert app_test_client.post(f"/domain/user/{doc['_id']}/clean", json={}).json()[
            "data"
        ] == (f"Just cleaned {doc['_id']} / Ann")
        assert app_test_client.post("/domain/user/find-papo", json={}).json()["data"] == (
            "hey-yo sandy"
        )
        response = app_test_client.post("/gateways/mailer/send-welcome", json={"to": "a@x"})
        assert response.json()["data"] == {"sent": "a@x"}

    def test_entity_delivery_from_module(self, app_test_dir: Path) -> None:
        builder = DuckApiApp(load_config(app_test_dir))
        builder.build()
        assert builder.hub.delivery == {"user": ["staff"]}

    def test_swagger_title(self, app_test_client: TestClient) -> None:
        document = app_test_client.get("/swagger.json").json()
        assert document["info"] == {"title": "app-test", "version": "1.2.3"}
        assert {"/sandy", "/user", "/sandy/{id}"} <= set(document["paths"])
