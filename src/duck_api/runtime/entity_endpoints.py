"""
Entity endpoint synthesis.

Derives the complete, ordered list of ``CRUDEndpoint`` descriptors for one
entity and the rack storing it:

1. collection root ``<path>``: create, query, bulk update, bulk delete
2. rack methods ``<path>/<method>``
3. item routes ``<path>/:id``: read, update, delete
4. schema methods ``<path>/:id/<sub/path>/<method>``, depth first

The order is stable; routers and OpenAPI documents follow it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from duck_api.core.errors import ConfigurationError
from duck_api.core.schema import JsonObject, SortSpec, array_of, is_schema, weaken_schema
from duck_api.core.strings import kebab_case
from duck_api.runtime.context import MethodContext, RequestContext, maybe_await
from duck_api.specs.endpoint import VERB_TO_CRUD, CRUDEndpoint
from duck_api.specs.entity import Entity, Method, MethodRouting

logger = logging.getLogger(__name__)

Handler = Callable[[RequestContext], Any]


# =============================================================================
# Query schemas
# =============================================================================


class ListQuery(BaseModel):
    """Query string of a collection read."""

    query: JsonObject | None = Field(default=None, description="Filter, as JSON")
    sort: SortSpec | None = Field(
        default=None, description="Sort as `-field,other` or a JSON object"
    )


class FilterQuery(BaseModel):
    """Query string of bulk updates and deletes."""

    query: JsonObject | None = Field(default=None, description="Filter, as JSON")


class VersionQuery(BaseModel):
    """Query string of schema methods."""

    version_: int | None = Field(
        default=None, alias="_v", description="Expected document version"
    )


def _is_missing(value: Any) -> bool:
    return value is None or value is False


def _declared(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None and candidate is not False:
            return candidate
    return False


# =============================================================================
# Handler factories
# =============================================================================


def create_create_handler(rack: Any) -> Handler:
    async def handler(ctx: RequestContext) -> None:
        ctx.response = await maybe_await(rack.create(ctx.body, ctx.state))

    return handler


def create_list_handler(rack: Any) -> Handler:
    async def handler(ctx: RequestContext) -> None:
        docs = await maybe_await(
            rack.list(ctx.get.get("query") or {}, state=ctx.state, sort=ctx.get.get("sort"))
        )
        if _is_missing(docs):
            return
        ctx.response = docs

    return handler


def create_bulk_update_handler(rack: Any) -> Handler:
    async def handler(ctx: RequestContext) -> None:
        ctx.response = await maybe_await(
            rack.update(ctx.get.get("query") or {}, ctx.body, ctx.state)
        )

    return handler


def create_bulk_delete_handler(rack: Any) -> Handler:
    async def handler(ctx: RequestContext) -> None:
        ctx.response = await maybe_await(rack.delete(ctx.get.get("query") or {}, ctx.state))

    return handler


def create_read_handler(rack: Any) -> Handler:
    async def handler(ctx: RequestContext) -> None:
        doc = await maybe_await(rack.read(ctx.params["id"], ctx.state))
        if _is_missing(doc):
            return
        ctx.response = doc

    return handler


def create_update_handler(rack: Any) -> Handler:
    async def handler(ctx: RequestContext) -> None:
        docs = await maybe_await(rack.update(ctx.params["id"], ctx.body, ctx.state))
        if docs:
            ctx.response = docs[0]

    return handler


def create_delete_handler(rack: Any) -> Handler:
    async def handler(ctx: RequestContext) -> None:
        docs = await maybe_await(rack.delete(ctx.params["id"], ctx.state))
        if docs:
            ctx.response = docs[0]

    return handler


def create_rack_method_handler(rack: Any, method: Method, verb: str) -> Handler:
    """Handler calling ``method.handler(payload, MethodContext)``."""

    async def handler(ctx: RequestContext) -> None:
        payload = ctx.get if verb == "get" else ctx.body
        method_ctx = MethodContext(
            state=ctx.state,
            rack=rack,
            resolver=ctx.resolver or getattr(rack, "resolver", None),
        )
        ctx.response = await maybe_await(method.handler(payload, method_ctx))

    return handler


def create_schema_method_handler(
    rack: Any, sub_path: str, method_name: str, method: Method
) -> Handler:
    """Handler running the schema method at route ``sub_path`` through ``rack.apply``."""
    routing = method.router or MethodRouting()

    async def handler(ctx: RequestContext) -> None:
        if method.verb == "get":
            payload: Any = {key: value for key, value in ctx.get.items() if key != "_v"}
        else:
            payload = ctx.body
        if routing.transform is not None:
            payload = await maybe_await(routing.transform(payload, ctx))

        validate = None
        if routing.validator is not None:

            def validate(doc: dict[str, Any]) -> Any:
                return routing.validator(doc, ctx)

        result = await maybe_await(
            rack.apply(
                id=ctx.params["id"],
                _v=ctx.get.get("_v"),
                path=sub_path,
                method=method_name,
                payload=payload,
                validate=validate,
                state=ctx.state,
            )
        )
        ctx.response = result["methodResult"]

    return handler


# =============================================================================
# Synthesis
# =============================================================================


def _method_query_schema(name: str, input_schema: Any) -> type[BaseModel]:
    if is_schema(input_schema):
        return create_model(
            f"{name}Query",
            __base__=input_schema,
            version_=(int | None, Field(default=None, alias="_v")),
        )
    return VersionQuery


def _endpoint(path: str, crud_key: str, operation: dict[str, Any]) -> CRUDEndpoint:
    endpoint = CRUDEndpoint.model_validate({"path": path, crud_key: operation})
    logger.debug(f"Synthesized {' '.join(endpoint.describe())}")
    return endpoint


def _ensure_entity(entity: Entity | Mapping[str, Any]) -> Entity:
    if isinstance(entity, Entity):
        return entity
    try:
        return Entity.model_validate(entity)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid entity: {exc}") from exc


def duck_rack_to_crud_endpoints(
    entity: Entity | Mapping[str, Any], rack: Any
) -> list[CRUDEndpoint]:
    """
    Synthesize every endpoint of ``entity`` backed by ``rack``.

    Args:
        entity: The entity, or a mapping parsed into one
        rack: Driver exposing ``create/read/update/delete/list/apply`` and an
            optional ``methods`` mapping

    Returns:
        Endpoints in the order: collection, rack methods, item, schema methods

    Raises:
        ConfigurationError: If the entity or one of its methods is malformed
    """
    entity = _ensure_entity(entity)
    schema = entity.duck_model.schema
    update_schema = weaken_schema(schema)
    name = entity.name
    endpoints: list[CRUDEndpoint] = []

    # Collection
    endpoints.append(
        CRUDEndpoint.model_validate(
            {
                "path": entity.path,
                "create": {
                    "description": f"creates {name}",
                    "access": entity.access.create,
                    "body": schema,
                    "output": schema,
                    "handler": create_create_handler(rack),
                },
                "read": {
                    "description": f"finds many {name} by complex query",
                    "access": entity.access.list,
                    "get": ListQuery,
                    "output": array_of(schema),
                    "handler": create_list_handler(rack),
                },
                "update": {
                    "description": f"updates multiple {name}",
                    "access": entity.access.update,
                    "get": FilterQuery,
                    "body": update_schema,
                    "output": array_of(schema),
                    "handler": create_bulk_update_handler(rack),
                },
                "delete": {
                    "description": f"deletes multiple {name}",
                    "access": entity.access.delete,
                    "get": FilterQuery,
                    "output": array_of(schema),
                    "handler": create_bulk_delete_handler(rack),
                },
            }
        )
    )

    # Rack methods
    for method_name, declared in (getattr(rack, "methods", None) or {}).items():
        method = Method.coerce(declared)
        if method.handler is None:
            raise ConfigurationError(f"Method {method_name} of {name} has no handler")
        override = entity.methods.get(method_name)
        verb = override.verb if override is not None else method.verb
        access = override.access if override is not None and override.access else method.access
        endpoints.append(
            _endpoint(
                f"{entity.path}/{kebab_case(method_name)}",
                VERB_TO_CRUD[verb],
                {
                    "description": method.description or f"method {method_name}",
                    "access": access,
                    "get": method.input if verb == "get" else True,
                    "body": method.input if verb != "get" else True,
                    "output": method.output,
                    "example": method.example,
                    "events": method.events,
                    "handler": create_rack_method_handler(rack, method, verb),
                },
            )
        )

    # Item
    endpoints.append(
        CRUDEndpoint.model_validate(
            {
                "path": f"{entity.path}/:id",
                "read": {
                    "description": f"reads one {name} by id",
                    "access": entity.access.read,
                    "output": schema,
                    "handler": create_read_handler(rack),
                },
                "update": {
                    "description": f"updates one {name} by id",
                    "access": entity.access.update,
                    "body": update_schema,
                    "output": schema,
                    "handler": create_update_handler(rack),
                },
                "delete": {
                    "description": f"deletes one {name} by id",
                    "access": entity.access.delete,
                    "output": schema,
                    "handler": create_delete_handler(rack),
                },
            }
        )
    )

    # Schema methods
    duck_model = getattr(rack, "duck_model", None) or entity.duck_model
    for dot_path, methods in duck_model.iter_methods():
        sub_path = "/".join(kebab_case(segment) for segment in dot_path.split(".") if segment)
        for method_name, method in methods.items():
            if method.handler is None:
                raise ConfigurationError(
                    f"Method {method_name} at '{dot_path}' of {name} has no handler"
                )
            routing = method.router or MethodRouting()
            input_schema = _declared(routing.input, method.input)
            segments = [entity.path, ":id", sub_path, kebab_case(method_name)]
            get_schema = (
                _method_query_schema(
                    f"{schema.__name__}{method_name[:1].upper()}{method_name[1:]}", input_schema
                )
                if method.verb == "get"
                else VersionQuery
            )
            endpoints.append(
                _endpoint(
                    "/".join(segment for segment in segments if segment),
                    VERB_TO_CRUD[method.verb],
                    {
                        "description": method.description or f"method {method_name}",
                        "access": method.access,
                        "example": method.example,
                        "get": get_schema,
                        "body": input_schema if method.verb != "get" else True,
                        "output": _declared(routing.output, method.output),
                        "events": method.events,
                        "handler": create_schema_method_handler(
                            rack, sub_path, method_name, method
                        ),
                    },
                )
            )

    logger.debug(f"Synthesized {len(endpoints)} endpoints for entity {name}")
    return endpoints
