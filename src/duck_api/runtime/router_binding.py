"""
Binding of CRUD endpoints into FastAPI routers.

Each operation of a ``CRUDEndpoint`` becomes a pipeline::

    access middleware -> validation middleware -> handler

Operations are tried in binding order, across every path and router matching
the request; the first pipeline writing ``ctx.response`` answers it. When none
does, the request ends as a 404.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from fastapi.routing import APIRoute
from starlette.routing import compile_path

from duck_api.core.errors import ApiError
from duck_api.runtime.access_middleware import response_access_middleware
from duck_api.runtime.context import Middleware, RequestContext, compose, handler_middleware
from duck_api.runtime.validation_middleware import schema_validation_middleware
from duck_api.specs.endpoint import CRUD_TO_VERB, CRUDEndpoint, EndpointHandler, HttpVerb

if TYPE_CHECKING:
    from duck_api.runtime.resolver import DependencyResolver

logger = logging.getLogger(__name__)

ALL_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

_PARAM_RE = re.compile(r":([A-Za-z0-9_-]+)")


def to_fastapi_path(path: str) -> tuple[str, dict[str, str]]:
    """
    Turn ``:param`` markers into ``{param}`` placeholders.

    Returns the converted path and a mapping from placeholder names back to
    the original parameter names (hyphens are not valid in placeholders).

    Examples:
        >>> to_fastapi_path("/users/:id")
        ('/users/{id}', {'id': 'id'})
        >>> to_fastapi_path("/posts/:post-id/tags")
        ('/posts/{post_id}/tags', {'post_id': 'post-id'})
    """
    names: dict[str, str] = {}

    def replace(match: re.Match[str]) -> str:
        original = match.group(1)
        placeholder = original.replace("-", "_")
        names[placeholder] = original
        return "{" + placeholder + "}"

    return _PARAM_RE.sub(replace, path), names


def build_pipeline(operation: EndpointHandler) -> Middleware:
    """Access filtering, then validation, then the operation handler."""
    return compose(
        [
            response_access_middleware(operation.access),
            schema_validation_middleware(operation.get, operation.body),
            handler_middleware(operation.handler),
        ]
    )


# =============================================================================
# Request parsing
# =============================================================================


def query_values(request: Request) -> dict[str, Any]:
    """Query string as a dict; repeated keys become lists."""
    values: dict[str, Any] = {}
    for key in request.query_params.keys():
        if key in values:
            continue
        items = request.query_params.getlist(key)
        values[key] = items[0] if len(items) == 1 else items
    return values


async def body_values(request: Request) -> Any:
    """
    Decode the body of a POST/PUT/PATCH/DELETE request.

    Raises:
        ApiError: 400 for malformed JSON, 415 for unsupported content types
    """
    if request.method not in BODY_METHODS:
        return {}
    raw = await request.body()
    if not raw:
        return {}
    content_type = request.headers.get("content-type", "application/json").lower()
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
    if "json" not in content_type:
        raise ApiError(415, f"Unsupported content type {content_type}")
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ApiError(400, "Malformed JSON body") from exc


def render_response(ctx: RequestContext) -> Response:
    """Envelope the handler result as ``{code: 200, data}`` unless left as is."""
    if ctx.leave_as_is:
        if isinstance(ctx.response, Response):
            return ctx.response
        if isinstance(ctx.response, (str, bytes)):
            return Response(content=ctx.response, media_type="text/plain")
        return JSONResponse(content=jsonable_encoder(ctx.response))
    data = ctx.response if ctx.response is not None else {}
    return JSONResponse(content={"code": 200, "data": jsonable_encoder(data)})


# =============================================================================
# Router
# =============================================================================


@dataclass(frozen=True)
class Binding:
    """One bound operation, as listed by ``CrudRouter.bindings``."""

    verb: str
    path: str
    description: str | None = None


@dataclass(frozen=True)
class _Operation:
    verb: HttpVerb
    pattern: re.Pattern[str]
    param_names: dict[str, str]
    pipeline: Middleware
    resolver: DependencyResolver | None

    def accepts(self, method: str) -> bool:
        return self.verb == HttpVerb.ALL or self.verb.value == method


class RouteDispatcher:
    """
    Every bound operation of an application, in binding order.

    A request is offered to each operation whose verb and path match it, even
    when they were bound on different paths or through different routers. The
    first pipeline writing ``ctx.response`` answers; when none does the
    request ends as a 404.
    """

    def __init__(self) -> None:
        self._operations: list[_Operation] = []

    def __len__(self) -> int:
        return len(self._operations)

    def add(
        self,
        full_path: str,
        verb: HttpVerb,
        pipeline: Middleware,
        resolver: DependencyResolver | None = None,
    ) -> None:
        fastapi_path, param_names = to_fastapi_path(full_path)
        pattern, _, _ = compile_path(fastapi_path)
        self._operations.append(_Operation(verb, pattern, param_names, pipeline, resolver))

    async def dispatch(self, request: Request) -> Response:
        path = request.scope["path"]
        root_path = request.scope.get("root_path", "")
        if root_path and path.startswith(root_path):
            path = path[len(root_path) :] or "/"

        get = query_values(request)
        body = await body_values(request)
        state = {"user": getattr(request.state, "user", None)}

        for operation in self._operations:
            if not operation.accepts(request.method):
                continue
            match = operation.pattern.match(path)
            if match is None:
                continue
            ctx = RequestContext(
                request=request,
                params={
                    operation.param_names.get(name, name): value
                    for name, value in match.groupdict().items()
                },
                get=dict(get),
                body=body,
                state=state,
                session=getattr(request.state, "session", None),
                resolver=operation.resolver,
            )
            await operation.pipeline(ctx)
            if ctx.handled:
                return render_response(ctx)

        raise ApiError(404)


class CrudRouter:
    """
    Binds ``CRUDEndpoint`` descriptors into a FastAPI ``APIRouter``.

    Routers of one application share a ``RouteDispatcher`` so that a request
    declined on one path is offered to the other paths matching it.

    Example:
        router = CrudRouter("/domain", resolver=resolver, dispatcher=dispatcher)
        router.bind_all(endpoints)
        app.include_router(router.router)
    """

    def __init__(
        self,
        prefix: str = "",
        resolver: DependencyResolver | None = None,
        dispatcher: RouteDispatcher | None = None,
    ):
        self.prefix = prefix.rstrip("/")
        self.resolver = resolver
        self.dispatcher = dispatcher if dispatcher is not None else RouteDispatcher()
        self.router = APIRouter(prefix=self.prefix)
        self.endpoints: list[CRUDEndpoint] = []
        self.bindings: list[Binding] = []
        self._routes: dict[str, APIRoute] = {}

    def bind(self, endpoint: CRUDEndpoint) -> None:
        """Register every operation of ``endpoint``."""
        self.endpoints.append(endpoint)
        for key, operation in endpoint.operations():
            verb = CRUD_TO_VERB[key]
            self.dispatcher.add(
                self.prefix + endpoint.path, verb, build_pipeline(operation), self.resolver
            )
            self._ensure_route(endpoint.path, verb)
            self.bindings.append(
                Binding(
                    verb=verb.value,
                    path=self.prefix + endpoint.path,
                    description=operation.description,
                )
            )
            logger.debug(f"Bound {verb.value} {self.prefix}{endpoint.path}")

    def bind_all(self, endpoints: Iterable[CRUDEndpoint]) -> None:
        for endpoint in endpoints:
            self.bind(endpoint)

    def _ensure_route(self, path: str, verb: HttpVerb) -> None:
        methods = ALL_METHODS if verb == HttpVerb.ALL else (verb.value,)
        route = self._routes.get(path)
        if route is not None:
            route.methods.update(methods)
            return

        fastapi_path, _ = to_fastapi_path(path)
        self.router.add_api_route(
            fastapi_path,
            self.dispatcher.dispatch,
            methods=list(methods),
            include_in_schema=False,
        )
        self._routes[path] = self.router.routes[-1]
