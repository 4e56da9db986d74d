"""
duck-api application assembly.

Builds a FastAPI application from entities, route trees, gateways and
plugins. Four routers are mounted, in this order:

- routes (no prefix): endpoints of the route tree
- domain (``/domain``): entity CRUD and method endpoints, plus ``GET /``
  listing the entity schemas
- gateways (``/gateways``): gateway method endpoints
- plugins (``/plugins``): endpoints returned by plugins

With ``with_swagger`` each router also serves ``swagger.json`` and ``docs``.
The realtime hub listens on ``websocket_path``.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, WebSocket
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from duck_api.core.config import ApiConfig
from duck_api.core.errors import ConfigurationError
from duck_api.core.strings import kebab_case
from duck_api.runtime.entity_endpoints import duck_rack_to_crud_endpoints
from duck_api.runtime.exception_handlers import register_exception_handlers
from duck_api.runtime.gateway_endpoints import gateway_to_crud_endpoints
from duck_api.runtime.jwt_access import JWTAccess
from duck_api.runtime.loaders import (
    load_entities_from_dir,
    load_gateways_from_dir,
    load_plugin,
    load_route_tree,
)
from duck_api.runtime.logging import Colors, get_logger
from duck_api.runtime.openapi import endpoints_to_openapi, swagger_ui
from duck_api.runtime.realtime import DeliveryRule, RealtimeHub
from duck_api.runtime.resolver import DependencyResolver
from duck_api.runtime.route_tree import route_to_crud_endpoints
from duck_api.runtime.router_binding import CrudRouter, RouteDispatcher
from duck_api.runtime.storage import DuckRack, DuckStorage
from duck_api.specs.endpoint import CRUDEndpoint
from duck_api.specs.entity import Entity, Gateway

logger = get_logger("API", Colors.API)

Plugin = Callable[["PluginContext"], Any]

ROUTER_NAMES = ("routes", "domain", "gateways", "plugins")


@dataclass
class PluginContext:
    """What a plugin receives: the app, the plugins router, the hub and the storage."""

    app: FastAPI
    router: CrudRouter
    hub: RealtimeHub | None
    storage: DuckStorage
    resolver: DependencyResolver | None = None


def rack_name(entity: Entity) -> str:
    """
    Storage name of an entity's rack.

    Examples:
        ``/user`` -> ``user``, ``/billing/invoice`` -> ``billing.invoice``
    """
    return ".".join(segment for segment in entity.path.strip("/").split("/") if segment)


# =============================================================================
# Application Builder
# =============================================================================


class DuckApiApp:
    """
    Builds a FastAPI application serving duck-api endpoints.

    Sources given explicitly win over the directories of ``config``.

    Example:
        >>> app = DuckApiApp(ApiConfig(), entities=[{"path": "/user", "model": {...}}]).build()
    """

    def __init__(
        self,
        config: ApiConfig | None = None,
        *,
        storage: DuckStorage | None = None,
        entities: Iterable[Entity | Mapping[str, Any]] | None = None,
        routes: Mapping[str, Any] | None = None,
        gateways: Iterable[Gateway | Mapping[str, Any]] | None = None,
        plugins: Sequence[Plugin | str] = (),
        delivery: Mapping[str, DeliveryRule] | None = None,
    ):
        self.config = config or ApiConfig()
        self.resolver = DependencyResolver()
        self.storage = storage or DuckStorage()
        if self.storage.resolver is None:
            self.storage.resolver = self.resolver
        self.hub = RealtimeHub()
        self._entities_source = entities
        self._routes_source = routes
        self._gateways_source = gateways
        self._plugins_source = plugins
        self._delivery = delivery

        self.entities: list[Entity] = []
        self.gateways: dict[str, Gateway] = {}
        self.dispatcher = RouteDispatcher()
        self.routers: dict[str, CrudRouter] = {}
        self.endpoints: dict[str, list[CRUDEndpoint]] = {name: [] for name in ROUTER_NAMES}
        self._app: FastAPI | None = None

    # ------------------------------------------------------------------
    # Build phases, called in order by build()
    # ------------------------------------------------------------------

    def _create_app(self) -> None:
        """Create the FastAPI app; FastAPI's own docs are replaced by the per-router ones."""
        self._app = FastAPI(
            title=self.config.title,
            description=self.config.description or "",
            version=self.config.version,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        register_exception_handlers(self._app)

        prefixes = {
            "routes": "",
            "domain": self.config.domain_prefix,
            "gateways": self.config.gateways_prefix,
            "plugins": self.config.plugins_prefix,
        }
        self.routers = {
            name: CrudRouter(prefixes[name], resolver=self.resolver, dispatcher=self.dispatcher)
            for name in ROUTER_NAMES
        }

    def _setup_resolver(self) -> None:
        def resolve_rack(name: str) -> DuckRack:
            rack = self.storage.get_rack(name) or self.storage.get_rack(
                kebab_case(name.removesuffix("Rack"))
            )
            if rack is None:
                raise ConfigurationError(f"Unknown rack '{name}'")
            return rack

        def resolve_gateway(name: str) -> Gateway:
            gateway = self.gateways.get(name) or self.gateways.get(kebab_case(name))
            if gateway is None:
                raise ConfigurationError(f"Unknown gateway '{name}'")
            return gateway

        self.resolver.register("rack", resolve_rack)
        self.resolver.register("gateway", resolve_gateway)

    def _setup_entities(self) -> None:
        """Parse entities, register one rack per entity and synthesize the domain endpoints."""
        source = self._entities_source
        if source is None:
            source = []
            if self.config.entities_dir:
                source = load_entities_from_dir(self.config.entities_dir)

        for declared in source:
            try:
                entity = (
                    declared if isinstance(declared, Entity) else Entity.model_validate(declared)
                )
            except PydanticValidationError as exc:
                raise ConfigurationError(f"Invalid entity: {exc}") from exc
            name = rack_name(entity)
            rack = self.storage.get_rack(name) or self.storage.create_rack(
                name, entity.duck_model, entity.methods
            )
            self.entities.append(entity)
            self.endpoints["domain"].extend(duck_rack_to_crud_endpoints(entity, rack))
            logger.info(f"Entity {entity.name} at {self.config.domain_prefix}{entity.path}")

    def _setup_routes(self) -> None:
        tree = self._routes_source
        if tree is None:
            tree = load_route_tree(self.config.routes_dir) if self.config.routes_dir else {}
        self.endpoints["routes"].extend(route_to_crud_endpoints(tree))

    def _setup_gateways(self) -> None:
        source = self._gateways_source
        if source is None:
            source = []
            if self.config.gateways_dir:
                source = load_gateways_from_dir(self.config.gateways_dir)

        for declared in source:
            try:
                gateway = (
                    declared if isinstance(declared, Gateway) else Gateway.model_validate(declared)
                )
            except PydanticValidationError as exc:
                raise ConfigurationError(f"Invalid gateway: {exc}") from exc
            self.gateways[kebab_case(gateway.name)] = gateway
            self.endpoints["gateways"].extend(gateway_to_crud_endpoints(gateway))

    def _setup_plugins(self) -> None:
        """Run every plugin; endpoint definitions they return go to the plugins router."""
        plugins: list[Plugin | str] = []
        if self.config.jwt_secret:
            plugins.append(JWTAccess(self.config.jwt_secret))
        plugins.extend(self.config.plugins)
        plugins.extend(self._plugins_source)

        context = PluginContext(
            app=self.app,
            router=self.routers["plugins"],
            hub=self.hub,
            storage=self.storage,
            resolver=self.resolver,
        )
        for declared in plugins:
            plugin = load_plugin(declared)
            returned = plugin(context)
            if inspect.isawaitable(returned):
                if inspect.iscoroutine(returned):
                    returned.close()
                raise ConfigurationError(f"Plugin {plugin!r} must be synchronous")
            for definition in returned or ():
                try:
                    self.endpoints["plugins"].append(CRUDEndpoint.model_validate(definition))
                except PydanticValidationError as exc:
                    raise ConfigurationError(f"Invalid plugin endpoint: {exc}") from exc

    def _setup_domain_index(self) -> None:
        schemas = {
            kebab_case(entity.name): entity.duck_model.schema.model_json_schema()
            for entity in self.entities
        }

        def list_schemas(ctx: Any) -> None:
            ctx.response = schemas

        self.routers["domain"].bind(
            CRUDEndpoint.model_validate(
                {
                    "path": "/",
                    "read": {"description": "lists entity schemas", "handler": list_schemas},
                }
            )
        )

    def _setup_docs(self) -> None:
        """Serve ``swagger.json`` and a Swagger UI page under each router's prefix.

        These are app routes, matched before any router's parameter paths.
        """
        if not self.config.with_swagger:
            return

        for name, crud_router in self.routers.items():
            document = endpoints_to_openapi(
                self.endpoints[name],
                prefix=crud_router.prefix or "/",
                title=self.config.title,
                version=self.config.version,
                description=self.config.description,
            )
            self.app.add_api_route(
                f"{crud_router.prefix}/swagger.json",
                _document_endpoint(document),
                methods=["GET"],
                include_in_schema=False,
            )
            self.app.add_api_route(
                f"{crud_router.prefix}/docs",
                _docs_endpoint(f"{crud_router.prefix}/swagger.json", f"{self.config.title} {name}"),
                methods=["GET"],
                include_in_schema=False,
            )

    def _bind_endpoints(self) -> None:
        for name in ROUTER_NAMES:
            self.routers[name].bind_all(self.endpoints[name])
        self._setup_domain_index()
        for name in ROUTER_NAMES:
            self.app.include_router(self.routers[name].router)

    def _setup_realtime(self) -> None:
        """Wire storage events to the hub; ``delivery`` passed in wins over entity rules."""
        declared = {
            rack_name(entity): entity.delivery
            for entity in self.entities
            if entity.delivery is not None
        }
        self.hub.wire(self.storage, {**declared, **(self._delivery or {})})

        async def websocket_endpoint(websocket: WebSocket) -> None:
            await self.hub.serve(websocket)

        self.app.add_api_websocket_route(self.config.websocket_path, websocket_endpoint)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self) -> FastAPI:
        """
        Build the FastAPI application.

        Raises:
            ConfigurationError: If any source is malformed; nothing is served then
        """
        self._create_app()
        self._setup_resolver()
        self._setup_entities()
        self._setup_routes()
        self._setup_gateways()
        self._setup_plugins()
        self._setup_docs()
        self._bind_endpoints()
        self._setup_realtime()

        state = self.app.state
        state.duck_api = self
        state.storage = self.storage
        state.hub = self.hub
        state.resolver = self.resolver

        total = sum(len(router.bindings) for router in self.routers.values())
        logger.info(f"Serving {total} operations from {len(self.entities)} entities")
        return self.app

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            raise RuntimeError("Application not built. Call build() first.")
        return self._app

    def bindings(self) -> list[tuple[str, str, str | None]]:
        """``(verb, path, description)`` of every bound operation, router by router."""
        return [
            (binding.verb, binding.path, binding.description)
            for name in ROUTER_NAMES
            for binding in self.routers[name].bindings
        ]


def _document_endpoint(document: dict[str, Any]) -> Callable[[], Any]:
    def serve_document() -> JSONResponse:
        return JSONResponse(document)

    return serve_document


def _docs_endpoint(openapi_url: str, title: str) -> Callable[[], Any]:
    def serve_docs() -> Any:
        return swagger_ui(openapi_url, title)

    return serve_docs


# =============================================================================
# Convenience
# =============================================================================


def create_app(
    config: ApiConfig | None = None,
    *,
    storage: DuckStorage | None = None,
    entities: Iterable[Entity | Mapping[str, Any]] | None = None,
    routes: Mapping[str, Any] | None = None,
    gateways: Iterable[Gateway | Mapping[str, Any]] | None = None,
    plugins: Sequence[Plugin | str] = (),
    delivery: Mapping[str, DeliveryRule] | None = None,
) -> FastAPI:
    """
    Create a FastAPI application serving duck-api endpoints.

    Args:
        config: Application configuration (defaults apply when omitted)
        storage: Storage holding the racks; a new in-memory one by default
        entities: Entities to serve, instead of ``config.entities_dir``
        routes: Route tree to serve, instead of ``config.routes_dir``
        gateways: Gateways to serve, instead of ``config.gateways_dir``
        plugins: Callables receiving a ``PluginContext``, or ``"module:attr"``
        delivery: Realtime delivery rule per rack name

    Example:
        >>> app = create_app(entities=[{"path": "/user", "model": {"schema": {"name": str}}}])
        >>> # Run with uvicorn: uvicorn mymodule:app
    """
    builder = DuckApiApp(
        config,
        storage=storage,
        entities=entities,
        routes=routes,
        gateways=gateways,
        plugins=plugins,
        delivery=delivery,
    )
    return builder.build()


def run_app(config: ApiConfig, **sources: Any) -> None:
    """Serve ``create_app(config, **sources)`` with uvicorn."""
    import uvicorn

    uvicorn.run(create_app(config, **sources), host=config.host, port=config.port)
