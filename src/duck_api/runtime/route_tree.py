"""
Route tree synthesis.

A route tree is a nested mapping whose leaves are CRUD bundles::

    {
        "users": {
            "me": {"read": read_me},
            "_id": {"read": read_user, "avatar": {"read": read_avatar}},
        }
    }

Every key contributes one path segment (``_id`` becomes ``:id``). A node
holding a valid CRUD bundle is an endpoint and, through its remaining keys,
a namespace for deeper endpoints at the same time.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from duck_api.core.errors import ConfigurationError
from duck_api.core.paths import convert_to_path
from duck_api.specs.endpoint import CRUD, CRUDEndpoint

logger = logging.getLogger(__name__)


def _param_position(endpoint: CRUDEndpoint) -> int:
    return endpoint.path.find(":")


def _collect(tree: Any, parent_path: Sequence[str]) -> list[CRUDEndpoint]:
    endpoints: list[CRUDEndpoint] = []
    if not isinstance(tree, Mapping):
        return endpoints

    for prop_name, value in tree.items():
        prop_name = str(prop_name)
        if prop_name == "0":
            raise ConfigurationError(
                f"Route tree under '/{'/'.join(parent_path)}' is keyed like an array"
            )
        segments = [*parent_path, prop_name]
        possible_crud = CRUD.pick(value)

        if CRUD.is_valid(possible_crud):
            path = "/" + "/".join(convert_to_path(segment) for segment in segments)
            endpoint = CRUDEndpoint.model_validate({"path": path, **possible_crud})
            logger.debug(f"Route {' '.join(endpoint.describe())}")
            endpoints.append(endpoint)
            endpoints.extend(_collect(CRUD.omit(value), segments))
            continue

        endpoints.extend(_collect(value, segments))

    return endpoints


def route_to_crud_endpoints(
    tree: Mapping[str, Any] | None, parent_path: Sequence[str] = ()
) -> list[CRUDEndpoint]:
    """
    Extract every CRUD bundle of ``tree`` as an endpoint.

    Endpoints without path parameters come first; the rest are ordered by
    the position of their first parameter, ties keeping tree order. This
    keeps ``/users/me`` ahead of ``/users/:id``.

    Raises:
        ConfigurationError: If a node is keyed like an array (``"0"``)
    """
    return sorted(_collect(tree or {}, list(parent_path)), key=_param_position)
