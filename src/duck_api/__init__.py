"""
duck-api

Synthesizes CRUD HTTP and WebSocket APIs from schema-described entities.

This package provides:
- Descriptor specs: endpoints, CRUD bundles, entities, methods and gateways
- Synthesizers: entity, route-tree and gateway endpoints
- Runtime: FastAPI binding, in-memory duck storage, realtime hub, JWT access
"""

from duck_api._version import get_version as _get_version

__version__ = _get_version()

from duck_api.core.config import ApiConfig, load_config
from duck_api.core.errors import ApiError, ConfigurationError, ValidationError
from duck_api.runtime.server import create_app
from duck_api.specs.endpoint import CRUD, CRUDEndpoint, EndpointHandler
from duck_api.specs.entity import Entity, Gateway, Method

__all__ = [
    "ApiConfig",
    "ApiError",
    "CRUD",
    "CRUDEndpoint",
    "ConfigurationError",
    "EndpointHandler",
    "Entity",
    "Gateway",
    "Method",
    "ValidationError",
    "create_app",
    "load_config",
]
