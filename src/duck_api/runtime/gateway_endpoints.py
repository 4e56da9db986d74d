"""
Gateway endpoint synthesis.

A gateway is a named bundle of methods; each method is served at
``/<gateway>/<method>`` with the verb it declares.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from duck_api.core.errors import ConfigurationError
from duck_api.core.strings import kebab_case
from duck_api.runtime.context import MethodContext, RequestContext, maybe_await
from duck_api.specs.endpoint import VERB_TO_CRUD, CRUDEndpoint
from duck_api.specs.entity import Gateway, Method

logger = logging.getLogger(__name__)


def create_gateway_handler(gateway: Gateway, method: Method) -> Any:
    async def handler(ctx: RequestContext) -> None:
        payload = ctx.get if method.verb == "get" else ctx.body
        method_ctx = MethodContext(state=ctx.state, rack=gateway, resolver=ctx.resolver)
        ctx.response = await maybe_await(method.handler(payload, method_ctx))

    return handler


def gateway_to_crud_endpoints(gateway: Gateway | Mapping[str, Any]) -> list[CRUDEndpoint]:
    """
    Synthesize one endpoint per gateway method, in declaration order.

    Raises:
        ConfigurationError: If the gateway or one of its methods is malformed
    """
    if not isinstance(gateway, Gateway):
        try:
            gateway = Gateway.model_validate(gateway)
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Invalid gateway: {exc}") from exc

    endpoints = []
    for method_name, method in gateway.methods.items():
        if method.handler is None:
            raise ConfigurationError(
                f"Method {method_name} of gateway {gateway.name} has no handler"
            )
        endpoint = CRUDEndpoint.model_validate(
            {
                "path": f"/{kebab_case(gateway.name)}/{kebab_case(method_name)}",
                VERB_TO_CRUD[method.verb]: {
                    "description": method.description,
                    "access": method.access,
                    "get": method.input if method.verb == "get" else True,
                    "body": method.input if method.verb != "get" else True,
                    "output": method.output,
                    "example": method.example,
                    "handler": create_gateway_handler(gateway, method),
                },
            }
        )
        logger.debug(f"Gateway {' '.join(endpoint.describe())}")
        endpoints.append(endpoint)
    return endpoints
