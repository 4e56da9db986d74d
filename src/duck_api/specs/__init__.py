"""
Descriptor types.

Everything the synthesizers produce or consume is declared here as frozen
pydantic models, built once at startup.
"""

from duck_api.specs.endpoint import (
    CRUD,
    CRUD_KEYS,
    CRUD_TO_VERB,
    VERB_TO_CRUD,
    CRUDEndpoint,
    CrudOperation,
    EndpointHandler,
    HttpVerb,
)
from duck_api.specs.entity import (
    CRUDAccess,
    DuckModel,
    Entity,
    Gateway,
    Method,
    MethodRouting,
)

__all__ = [
    "CRUD",
    "CRUDAccess",
    "CRUDEndpoint",
    "CRUD_KEYS",
    "CRUD_TO_VERB",
    "CrudOperation",
    "DuckModel",
    "EndpointHandler",
    "Entity",
    "Gateway",
    "HttpVerb",
    "Method",
    "MethodRouting",
    "VERB_TO_CRUD",
]
