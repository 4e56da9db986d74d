"""
Schema toolkit - the schema contract used by descriptors and synthesizers.

Schemas are pydantic model classes. This module provides the operations the
endpoint synthesizers need on top of pydantic:

- ``ensure_schema``: build a model class from a mapping of field definitions
- ``weaken_schema``: clone a model with every field optional (partial updates)
- ``own_paths`` / ``schema_at_path`` / ``field_path``: navigate nested child schemas
- ``schema_methods``: read the ``_methods`` a schema declares
- ``parse_value``: validate a value and return plain data

Custom methods are declared on a schema with a ``_methods`` class variable::

    class Address(BaseModel):
        _methods: ClassVar[dict[str, Any]] = {"verify": verify_address}

        street: str
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping
from types import NoneType, UnionType
from typing import Annotated, Any, Optional, Union, get_args, get_origin

from pydantic import BaseModel, BeforeValidator, Field, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo, ModelPrivateAttr

from duck_api.core.errors import ConfigurationError, ValidationError
from duck_api.core.strings import kebab_case, split_words

METHODS_ATTR = "_methods"


class PartialModel(BaseModel):
    """Base of weakened clones; parsed values keep only the keys that were sent."""


# =============================================================================
# Query helpers
# =============================================================================


def _loads_json(value: Any) -> Any:
    """Decode JSON strings coming from the query string, leave anything else alone."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _loads_json_object(value: Any) -> Any:
    if isinstance(value, str) and value.lstrip().startswith("{"):
        return _loads_json(value)
    return value


JsonObject = Annotated[dict[str, Any], BeforeValidator(_loads_json)]
SortSpec = Annotated[str | dict[str, int], BeforeValidator(_loads_json_object)]


# =============================================================================
# Construction
# =============================================================================


def is_schema(value: Any) -> bool:
    """Whether ``value`` is a pydantic model class."""
    return isinstance(value, type) and issubclass(value, BaseModel)


def _schema_name(prefix: str, key: str) -> str:
    return prefix + "".join(word.capitalize() for word in split_words(key))


def _field_definition(spec: Any, name: str) -> tuple[Any, Any]:
    if is_schema(spec):
        return (spec, ...)
    if isinstance(spec, Mapping):
        return (ensure_schema(spec, name), ...)
    if isinstance(spec, tuple):
        if len(spec) != 2:
            raise ConfigurationError(f"Invalid field definition for {name}: {spec!r}")
        return spec
    return (spec, ...)


def ensure_schema(value: Any, name: str = "Schema") -> type[BaseModel]:
    """
    Return ``value`` as a pydantic model class.

    A mapping is read as field definitions: a type means a required field of
    that type, a ``(type, default)`` tuple is passed to pydantic unchanged and
    a nested mapping becomes a nested model. A ``_methods`` key is attached
    to the generated model as its declared methods.

    Example:
        >>> User = ensure_schema({"name": str, "age": (int, 0)}, "User")
        >>> User(name="Ann").age
        0
    """
    if is_schema(value):
        return value
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"Invalid schema {value!r}")

    definitions = dict(value)
    methods = definitions.pop(METHODS_ATTR, None)
    fields = {
        key: _field_definition(spec, _schema_name(name, key)) for key, spec in definitions.items()
    }
    model = create_model(name, **fields)
    if methods:
        setattr(model, METHODS_ATTR, dict(methods))
    return model


def array_of(schema: Any) -> Any:
    """Return the annotation for a list of ``schema`` items."""
    return list[schema]


# =============================================================================
# Weakening
# =============================================================================


def child_schema(annotation: Any) -> type[BaseModel] | None:
    """Return the model class behind a field annotation (``Model`` or ``Model | None``)."""
    if is_schema(annotation):
        return annotation
    if get_origin(annotation) in (Union, UnionType):
        members = [arg for arg in get_args(annotation) if arg is not NoneType]
        if len(members) == 1 and is_schema(members[0]):
            return members[0]
    return None


def _weaken_field(
    info: FieldInfo, memo: dict[type[BaseModel], type[BaseModel] | None]
) -> tuple[Any, FieldInfo]:
    annotation = info.annotation
    child = child_schema(annotation)
    if child is not None:
        nullable = get_origin(annotation) in (Union, UnionType) and NoneType in get_args(
            annotation
        )
        annotation = _weaken(child, memo)
        if nullable:
            annotation = Optional[annotation]  # noqa: UP007
    elif info.metadata:
        annotation = Annotated[(annotation, *info.metadata)]
    return (
        annotation,
        Field(
            default=None,
            alias=info.alias,
            validation_alias=info.validation_alias,
            serialization_alias=info.serialization_alias,
            title=info.title,
            description=info.description,
            examples=info.examples,
            json_schema_extra=info.json_schema_extra,
        ),
    )


def _weaken(
    schema: type[BaseModel], memo: dict[type[BaseModel], type[BaseModel] | None]
) -> Any:
    if schema in memo:
        # None marks a clone still being built: refer to it by name
        return memo[schema] or f"Partial{schema.__name__}"
    memo[schema] = None
    fields = {name: _weaken_field(info, memo) for name, info in schema.model_fields.items()}
    partial = create_model(
        f"Partial{schema.__name__}",
        __base__=(schema, PartialModel),
        __doc__=f"Partial update schema for {schema.__name__}",
        **fields,
    )
    memo[schema] = partial
    return partial


def weaken_schema(schema: type[BaseModel]) -> type[BaseModel]:
    """
    Clone ``schema`` with every field optional and without defaults.

    The clone subclasses ``schema``, so its validators and ``model_config``
    still apply; only requiredness and defaults are dropped. Nested models are
    weakened recursively, a self-referencing model reuses its own clone. The
    original schema is never modified and keeps validating create payloads
    strictly.
    """
    memo: dict[type[BaseModel], type[BaseModel] | None] = {}
    partial = _weaken(schema, memo)
    clones = [clone for clone in memo.values() if clone is not None]
    namespace = {clone.__name__: clone for clone in clones}
    for clone in reversed(clones):
        if not clone.__pydantic_complete__:
            clone.model_rebuild(force=True, _types_namespace=namespace)
    return partial


# =============================================================================
# Introspection
# =============================================================================


def own_paths(schema: type[BaseModel]) -> list[str]:
    """Names of the fields of ``schema`` that hold nested schemas, in declaration order."""
    return [
        name for name, info in schema.model_fields.items() if child_schema(info.annotation)
    ]


def schema_at_path(schema: type[BaseModel], path: str) -> type[BaseModel]:
    """Resolve the nested schema at dotted ``path`` (``""`` is ``schema`` itself)."""
    current = schema
    for segment in filter(None, path.split(".")):
        info = current.model_fields.get(segment)
        nested = child_schema(info.annotation) if info else None
        if nested is None:
            raise ConfigurationError(f"No nested schema at path '{path}' of {schema.__name__}")
        current = nested
    return current


def schema_methods(schema: type[BaseModel]) -> dict[str, Any]:
    """Return the ``_methods`` declared on ``schema`` (empty when none)."""
    methods = getattr(schema, METHODS_ATTR, None)
    if isinstance(methods, ModelPrivateAttr):
        methods = methods.get_default()
    return dict(methods or {})


def iter_schema_methods(
    schema: type[BaseModel],
    parent_path: str = "",
    _ancestors: frozenset[type[BaseModel]] = frozenset(),
) -> Iterator[tuple[str, dict[str, Any]]]:
    """
    Walk ``schema`` depth first and yield ``(dot_path, methods)`` per level.

    Each level's own methods are yielded before its children are visited, so
    the output follows declaration order. A child schema already on the path
    from the root (a self reference) is not entered again.
    """
    methods = schema_methods(schema)
    if methods:
        yield parent_path, methods
    ancestors = _ancestors | {schema}
    for name in own_paths(schema):
        child = schema_at_path(schema, name)
        if child in ancestors:
            continue
        path = f"{parent_path}.{name}" if parent_path else name
        yield from iter_schema_methods(child, path, ancestors)


def field_path(schema: type[BaseModel], sub_path: str) -> str:
    """
    Map a route sub path (``geo-point/lat``) back to the dotted field path.

    Segments may be separated by ``/`` or ``.`` and may be kebab-cased field
    names or the field names themselves.

    Raises:
        ConfigurationError: If a segment names no nested schema
    """
    names: list[str] = []
    current = schema
    for segment in filter(None, re.split(r"[/.]", sub_path)):
        for name in own_paths(current):
            if segment in (name, kebab_case(name)):
                names.append(name)
                current = schema_at_path(current, name)
                break
        else:
            raise ConfigurationError(f"No nested schema at path '{sub_path}' of {schema.__name__}")
    return ".".join(names)


# =============================================================================
# Parsing
# =============================================================================


def parse_value(
    schema: type[BaseModel], value: Any, *, context: dict[str, Any] | None = None
) -> dict[str, Any]:
    """
    Validate ``value`` against ``schema`` and return plain data.

    Raises:
        ValidationError: with one entry per failing field
    """
    try:
        instance = schema.model_validate({} if value is None else value, context=context)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc
    return instance.model_dump(by_alias=True, exclude_unset=issubclass(schema, PartialModel))
