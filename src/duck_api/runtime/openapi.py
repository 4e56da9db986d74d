"""
OpenAPI export of synthesized endpoints.

A pure view over ``CRUDEndpoint`` descriptors: JSON schemas come from the
pydantic models declared as ``get``/``body``/``output`` and are collected
under ``components.schemas``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse
from pydantic import TypeAdapter

from duck_api.core.schema import child_schema, is_schema
from duck_api.specs.endpoint import CRUDEndpoint, CrudOperation, EndpointHandler

REF_TEMPLATE = "#/components/schemas/{model}"

_PATH_PARAM_RE = re.compile(r"/:([^/]+)")

# CRUD keys documented per OpenAPI verb; ``list`` documents GET when ``read`` is absent
OPENAPI_VERBS: dict[str, tuple[CrudOperation, ...]] = {
    "get": (CrudOperation.READ, CrudOperation.LIST),
    "post": (CrudOperation.CREATE,),
    "patch": (CrudOperation.UPDATE,),
    "delete": (CrudOperation.DELETE,),
}


def openapi_path(path: str) -> str:
    """
    Examples:
        >>> openapi_path("/users/:id/address/verify")
        '/users/{id}/address/verify'
    """
    return _PATH_PARAM_RE.sub(r"/{\1}", path)


def path_parameters(path: str) -> list[dict[str, Any]]:
    return [
        {
            "name": name,
            "in": "path",
            "description": f"{name} parameter",
            "required": True,
            "style": "simple",
            "schema": {"type": "string"},
        }
        for name in _PATH_PARAM_RE.findall(path)
    ]


def schema_json(
    annotation: Any, components: dict[str, Any], mode: str = "validation"
) -> dict[str, Any]:
    """
    JSON schema of ``annotation``; models are registered in ``components``
    and returned as references.
    """
    schema = TypeAdapter(annotation).json_schema(ref_template=REF_TEMPLATE, mode=mode)
    components.update(schema.pop("$defs", {}))
    if is_schema(annotation):
        components[annotation.__name__] = schema
        return {"$ref": REF_TEMPLATE.format(model=annotation.__name__)}
    return schema


def query_parameters(get: Any, components: dict[str, Any]) -> list[dict[str, Any]]:
    """One parameter per top-level scalar field of a ``get`` schema."""
    if not is_schema(get):
        return []
    properties = TypeAdapter(get).json_schema(ref_template=REF_TEMPLATE).get("properties", {})
    parameters = []
    for name, info in get.model_fields.items():
        if child_schema(info.annotation) is not None:
            continue
        alias = info.alias or name
        parameter: dict[str, Any] = {
            "name": alias,
            "in": "query",
            "required": info.is_required(),
            "schema": properties.get(alias, {}),
            "style": "simple",
        }
        if info.description:
            parameter["description"] = info.description
        if info.examples:
            parameter["example"] = info.examples[0]
        parameters.append(parameter)
    return parameters


def _responses(operation: EndpointHandler, components: dict[str, Any]) -> dict[str, Any]:
    outputs = operation.output or {"200": None}
    responses = {}
    for code, output in outputs.items():
        data = schema_json(output, components, mode="serialization") if output is not None else {}
        responses[code] = {
            "description": f"{code} response",
            "content": {
                "application/json": {
                    "schema": {
                        "type": "object",
                        "properties": {
                            "code": {"type": "integer", "example": int(code)},
                            "data": data,
                        },
                    }
                }
            },
        }
    return responses


def convert_operation(
    endpoint: CRUDEndpoint,
    operation: EndpointHandler,
    verb: str,
    components: dict[str, Any],
) -> dict[str, Any]:
    """OpenAPI operation object of one CRUD operation."""
    converted: dict[str, Any] = {
        "tags": [endpoint.path.strip("/").split("/")[0]],
        "parameters": path_parameters(endpoint.path) + query_parameters(operation.get, components),
        "responses": _responses(operation, components),
    }
    if operation.summary:
        converted["summary"] = operation.summary
    if operation.description:
        converted["description"] = operation.description
    if verb != "get" and is_schema(operation.body):
        body: dict[str, Any] = {
            "required": True,
            "content": {"application/json": {"schema": schema_json(operation.body, components)}},
        }
        if operation.example is not None:
            body["content"]["application/json"]["example"] = operation.example
        converted["requestBody"] = body
    return converted


def crud_endpoint_to_openapi(
    endpoint: CRUDEndpoint, components: dict[str, Any] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Path item of ``endpoint``: ``{"/users/{id}": {"get": ..., "patch": ...}}``.
    """
    components = {} if components is None else components
    operations = {}
    for verb, keys in OPENAPI_VERBS.items():
        operation = next(
            (endpoint.operation(key) for key in keys if endpoint.operation(key) is not None), None
        )
        if operation is not None:
            operations[verb] = convert_operation(endpoint, operation, verb, components)
    return {openapi_path(endpoint.path): operations}


def endpoints_to_openapi(
    endpoints: Iterable[CRUDEndpoint],
    *,
    prefix: str = "/",
    title: str = "duck-api",
    version: str = "0.0.0",
    description: str | None = None,
) -> dict[str, Any]:
    """Complete OpenAPI 3.1 document for ``endpoints`` served under ``prefix``."""
    components: dict[str, Any] = {}
    paths: dict[str, dict[str, Any]] = {}
    for endpoint in endpoints:
        for path, operations in crud_endpoint_to_openapi(endpoint, components).items():
            paths.setdefault(path, {}).update(operations)

    info: dict[str, Any] = {"title": title, "version": version}
    if description:
        info["description"] = description

    return {
        "openapi": "3.1.0",
        "info": info,
        "servers": [{"url": prefix or "/", "description": "running server"}],
        "paths": paths,
        "components": {
            "schemas": components,
            "securitySchemes": {
                "bearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
            },
        },
        "security": [{"bearerAuth": []}],
    }


def swagger_ui(openapi_url: str, title: str) -> HTMLResponse:
    """Swagger UI page reading the document at ``openapi_url``."""
    return get_swagger_ui_html(openapi_url=openapi_url, title=f"{title} - Swagger UI")
