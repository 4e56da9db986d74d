"""
Directory loaders.

Turn directories of Python modules into the in-memory structures the
synthesizers consume:

- routes: modules exposing ``route`` (a CRUD-shaped mapping) nested into a
  route tree by their relative path (``users/_id.py`` -> ``users._id``)
- entities: modules exposing ``entity``
- gateways: modules exposing ``gateway``

``__init__.py``, ``conftest.py``, test modules and ``lib``/``tests``
directories are skipped.
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import re
import sys
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from types import ModuleType
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from duck_api.core.errors import ConfigurationError
from duck_api.core.paths import convert_to_dot
from duck_api.specs.entity import Entity, Gateway

logger = logging.getLogger(__name__)

SKIPPED_DIRECTORIES = frozenset({"lib", "tests", "__pycache__"})
_MODULE_NAME_RE = re.compile(r"\W")


def iter_python_files(directory: Path) -> Iterator[Path]:
    """Yield loadable modules under ``directory`` in path order."""
    for file in sorted(directory.rglob("*.py")):
        relative = file.relative_to(directory)
        if any(part in SKIPPED_DIRECTORIES for part in relative.parts[:-1]):
            continue
        name = file.name
        if name in ("__init__.py", "conftest.py"):
            continue
        if name.startswith("test_") or name.endswith("_test.py"):
            continue
        yield file


def load_module(file: Path, directory: Path) -> ModuleType:
    """
    Import ``file`` under a module name derived from its absolute path.

    Raises:
        ConfigurationError: If executing the module fails
    """
    module_name = "duck_api_user_" + _MODULE_NAME_RE.sub("_", str(file.resolve().with_suffix("")))
    spec = importlib.util.spec_from_file_location(module_name, file)
    if spec is None or spec.loader is None:
        raise ConfigurationError("Cannot create module spec", file=str(file))

    module = importlib.util.module_from_spec(spec)

    # Add to sys.modules before exec (required for dataclasses and pickling)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        del sys.modules[module_name]
        raise ConfigurationError(
            f"Error executing module: {e}", file=file.relative_to(directory).as_posix()
        ) from e
    return module


def _exported(directory: Path | str, attribute: str) -> Iterator[tuple[str, Any]]:
    root = Path(directory)
    if not root.is_dir():
        logger.warning(f"Directory not found: {root}")
        return
    for file in iter_python_files(root):
        module = load_module(file, root)
        value = getattr(module, attribute, None)
        if value is None:
            logger.debug(f"{file} exposes no '{attribute}', skipped")
            continue
        yield file.relative_to(root).as_posix(), value


# =============================================================================
# Routes
# =============================================================================


def load_route_tree(directory: Path | str) -> dict[str, Any]:
    """
    Build a route tree from the modules of ``directory``.

    Example:
        ``api/sandy/index.py`` and ``api/sandy/_id.py`` give
        ``{"sandy": {<index route>, "_id": {<_id route>}}}``
    """
    tree: dict[str, Any] = {}
    for relative, route in _exported(directory, "route"):
        if not isinstance(route, Mapping):
            raise ConfigurationError("'route' must be a mapping", file=relative)
        *parents, leaf = convert_to_dot(relative).split(".")
        node = tree
        for segment in parents:
            node = node.setdefault(segment, {})
        node.setdefault(leaf, {}).update(route)
        logger.debug(f"Loaded route {relative}")
    return tree


# =============================================================================
# Entities and gateways
# =============================================================================


def load_entities_from_dir(directory: Path | str) -> list[Entity]:
    """
    Parse the ``entity`` of every module of ``directory``.

    ``file`` is set to the module path relative to ``directory`` so the entity
    path defaults to it (``user.py`` -> ``/user``).

    Raises:
        ConfigurationError: Naming the file of an invalid entity
    """
    entities = []
    for relative, entity in _exported(directory, "entity"):
        if isinstance(entity, Entity):
            entities.append(entity)
            continue
        if not isinstance(entity, Mapping):
            raise ConfigurationError("'entity' must be a mapping or an Entity", file=relative)
        try:
            entities.append(Entity.model_validate({"file": relative, **entity}))
        except PydanticValidationError as exc:
            for error in exc.errors():
                logger.error(f"{relative}: {'.'.join(map(str, error['loc']))}: {error['msg']}")
            raise ConfigurationError(f"Invalid entity: {exc}", file=relative) from exc
    return entities


def load_gateways_from_dir(directory: Path | str) -> list[Gateway]:
    """Parse the ``gateway`` of every module; ``name`` defaults to the file name."""
    gateways = []
    for relative, gateway in _exported(directory, "gateway"):
        if isinstance(gateway, Gateway):
            gateways.append(gateway)
            continue
        if not isinstance(gateway, Mapping):
            raise ConfigurationError("'gateway' must be a mapping or a Gateway", file=relative)
        data = dict(gateway)
        data.setdefault("name", convert_to_dot(relative).split(".")[-1])
        try:
            gateways.append(Gateway.model_validate(data))
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Invalid gateway: {exc}", file=relative) from exc
    return gateways


def load_plugin(plugin: str | Callable[..., Any]) -> Callable[..., Any]:
    """
    Resolve a plugin given as a callable or as ``"package.module:attribute"``.

    Raises:
        ConfigurationError: If the plugin cannot be imported or is not callable
    """
    if callable(plugin):
        return plugin

    module_name, _, attribute = plugin.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Error loading plugin {plugin}: {e}") from e

    loaded = getattr(module, attribute or "plugin", None)
    if not callable(loaded):
        raise ConfigurationError(f"Invalid plugin {plugin}. A plugin must be callable.")
    return loaded
