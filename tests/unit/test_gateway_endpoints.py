"""Tests for gateway endpoint synthesis and the dependency resolver."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from duck_api.core.errors import ConfigurationError
from duck_api.runtime.context import RequestContext
from duck_api.runtime.gateway_endpoints import gateway_to_crud_endpoints
from duck_api.runtime.resolver import DependencyResolver


def send_welcome(payload: Any, ctx: Any) -> dict[str, Any]:
    return {"sent": payload["to"]}


class TestGatewayToCrudEndpoints:
    def test_one_endpoint_per_method(self) -> None:
        endpoints = gateway_to_crud_endpoints(
            {
                "name": "mailService",
                "methods": {
                    "sendWelcome": {"input": {"to": str}, "handler": send_welcome},
                    "listTemplates": {"verb": "get", "handler": MagicMock()},
                },
            }
        )

        assert [endpoint.describe() for endpoint in endpoints] == [
            ["POST /mail-service/send-welcome"],
            ["GET /mail-service/list-templates"],
        ]
        assert endpoints[1].read.body is True

    @pytest.mark.asyncio
    async def test_handler_gets_payload_and_gateway(self) -> None:
        (endpoint,) = gateway_to_crud_endpoints(
            {"name": "mailer", "methods": {"sendWelcome": send_welcome}}
        )
        resolver = DependencyResolver()
        ctx = RequestContext(body={"to": "a@x.com"}, resolver=resolver)

        await endpoint.create.handler(ctx)

        assert ctx.response == {"sent": "a@x.com"}

    def test_method_without_handler(self) -> None:
        with pytest.raises(ConfigurationError, match="sendWelcome"):
            gateway_to_crud_endpoints({"name": "mailer", "methods": {"sendWelcome": {}}})

    def test_invalid_gateway(self) -> None:
        with pytest.raises(ConfigurationError):
            gateway_to_crud_endpoints({"methods": {}})


class TestDependencyResolver:
    def test_resolve(self) -> None:
        resolver = DependencyResolver({"rack": lambda name: f"rack:{name}"})
        assert resolver.resolve("rack", "user") == "rack:user"
        assert "rack" in resolver
        assert resolver.kinds == ["rack"]

    def test_unknown_kind(self) -> None:
        with pytest.raises(ConfigurationError, match="service"):
            DependencyResolver().resolve("service", "mailer")

    def test_register_replaces(self) -> None:
        resolver = DependencyResolver()
        resolver.register("gateway", lambda name: 1)
        resolver.register("gateway", lambda name: 2)
        assert resolver.resolve("gateway", "x") == 2
