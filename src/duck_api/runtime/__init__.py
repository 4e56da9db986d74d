"""
duck-api runtime (FastAPI + pydantic).

This module provides:
- Endpoint synthesis from entities, route trees and gateways
- Binding of endpoints into FastAPI routers
- In-memory duck storage with lifecycle events
- Realtime fan-out over WebSockets and the JWT access plugin

Example usage:
    >>> from duck_api.runtime import create_app
    >>> app = create_app(entities=[{"path": "/user", "model": {"schema": {"name": str}}}])
"""

from duck_api.runtime.context import UNSET, MethodContext, RequestContext
from duck_api.runtime.entity_endpoints import duck_rack_to_crud_endpoints
from duck_api.runtime.gateway_endpoints import gateway_to_crud_endpoints
from duck_api.runtime.jwt_access import JWTAccess
from duck_api.runtime.loaders import load_entities_from_dir, load_gateways_from_dir, load_route_tree
from duck_api.runtime.openapi import crud_endpoint_to_openapi, endpoints_to_openapi
from duck_api.runtime.realtime import RealtimeHub
from duck_api.runtime.resolver import DependencyResolver
from duck_api.runtime.route_tree import route_to_crud_endpoints
from duck_api.runtime.router_binding import CrudRouter, RouteDispatcher
from duck_api.runtime.server import DuckApiApp, PluginContext, create_app, run_app
from duck_api.runtime.storage import DuckRack, DuckStorage

__all__ = [
    "UNSET",
    "CrudRouter",
    "DependencyResolver",
    "DuckApiApp",
    "DuckRack",
    "DuckStorage",
    "JWTAccess",
    "MethodContext",
    "PluginContext",
    "RealtimeHub",
    "RequestContext",
    "RouteDispatcher",
    "create_app",
    "crud_endpoint_to_openapi",
    "duck_rack_to_crud_endpoints",
    "endpoints_to_openapi",
    "gateway_to_crud_endpoints",
    "load_entities_from_dir",
    "load_gateways_from_dir",
    "load_route_tree",
    "route_to_crud_endpoints",
    "run_app",
]
