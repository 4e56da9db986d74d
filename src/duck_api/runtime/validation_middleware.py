"""
Request validation against the ``get`` and ``body`` schemas of an operation.
"""

from __future__ import annotations

import logging
from typing import Any

from duck_api.core.errors import ApiError
from duck_api.core.schema import is_schema, parse_value
from duck_api.runtime.context import CallNext, Middleware, RequestContext
from duck_api.specs.endpoint import coerce_input

logger = logging.getLogger(__name__)


def schema_validation_middleware(get: Any = True, body: Any = True) -> Middleware:
    """
    Build the middleware validating incoming query and body values.

    Args:
        get: ``True`` accepts any query, ``False`` rejects a non-empty one, a
            schema parses it
        body: same as ``get`` for the request body

    Raises (per request):
        ApiError: 400 when input is sent where none is accepted
        ValidationError: 400 when input does not match its schema
    """
    get = coerce_input(get)
    body = coerce_input(body)

    async def run(ctx: RequestContext, call_next: CallNext) -> None:
        if get is False and ctx.get:
            logger.debug("Rejected query string on an operation accepting none")
            raise ApiError(400, "Query parameters are not accepted")
        if body is False and ctx.body:
            logger.debug("Rejected body on an operation accepting none")
            raise ApiError(400, "Request body is not accepted")

        context = {"state": ctx.state, "ctx": ctx}
        if is_schema(get):
            ctx.get = parse_value(get, ctx.get, context=context)
        if is_schema(body):
            ctx.body = parse_value(body, ctx.body, context=context)

        await call_next()

    return run
