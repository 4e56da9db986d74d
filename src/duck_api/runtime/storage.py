"""
In-memory duck storage.

A ``DuckStorage`` holds one ``DuckRack`` per entity. Racks keep documents in
memory, validate them with the entity schema and emit lifecycle events
(``create``, ``read``, ``update``, ``delete``, ``list``, ``method``) that the
realtime hub fans out to websocket clients.

Documents carry two reserved keys:
- ``_id``: hex uuid assigned on create
- ``_v``: version, starting at 1 and bumped on every write
"""

from __future__ import annotations

import asyncio
import builtins
import copy
import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import Any
from uuid import uuid4

from duck_api.core.errors import ApiError, ConfigurationError
from duck_api.core.schema import field_path, is_schema, parse_value
from duck_api.runtime.context import MethodContext, maybe_await
from duck_api.runtime.resolver import DependencyResolver
from duck_api.specs.entity import DuckModel, Method

logger = logging.getLogger(__name__)

EVENTS = ("create", "read", "update", "delete", "list", "method")
RESERVED_KEYS = ("_id", "_v")

Listener = Callable[[dict[str, Any]], Any]

# =============================================================================
# Query matching
# =============================================================================

_MISSING = object()


def _lookup(doc: Mapping[str, Any], path: str) -> Any:
    current: Any = doc
    for segment in path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def _compare(value: Any, expected: Any, compare: Callable[[Any, Any], bool]) -> bool:
    if value is _MISSING or value is None:
        return False
    try:
        return compare(value, expected)
    except TypeError:
        return False


def _match_operator(value: Any, operator: str, expected: Any) -> bool:
    if operator == "$eq":
        return value is not _MISSING and value == expected
    if operator == "$ne":
        return value is _MISSING or value != expected
    if operator == "$gt":
        return _compare(value, expected, lambda a, b: a > b)
    if operator == "$gte":
        return _compare(value, expected, lambda a, b: a >= b)
    if operator == "$lt":
        return _compare(value, expected, lambda a, b: a < b)
    if operator == "$lte":
        return _compare(value, expected, lambda a, b: a <= b)
    if operator == "$in":
        return value is not _MISSING and value in expected
    if operator == "$nin":
        return value is _MISSING or value not in expected
    if operator == "$exists":
        return (value is not _MISSING) == bool(expected)
    raise ApiError(400, f"Unknown query operator {operator}")


def _is_operator_block(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(
        str(key).startswith("$") for key in value
    )


def matches(doc: Mapping[str, Any], query: Mapping[str, Any] | None, prefix: str = "") -> bool:
    """
    Whether ``doc`` satisfies ``query``.

    Keys may be dotted (``address.zip``) or nested objects; values are
    compared for equality unless they are an operator block such as
    ``{"$gte": 18}``.

    Examples:
        >>> matches({"age": 20, "address": {"zip": "1"}}, {"age": {"$gte": 18}})
        True
        >>> matches({"address": {"zip": "1"}}, {"address": {"zip": "2"}})
        False
    """
    for key, expected in (query or {}).items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if _is_operator_block(expected):
            value = _lookup(doc, path)
            if not all(_match_operator(value, op, arg) for op, arg in expected.items()):
                return False
        elif isinstance(expected, Mapping) and expected:
            if not matches(doc, expected, path):
                return False
        else:
            value = _lookup(doc, path)
            if value is _MISSING or value != expected:
                return False
    return True


# =============================================================================
# Sorting
# =============================================================================


def sort_keys(sort: str | Mapping[str, Any] | None) -> builtins.list[tuple[str, int]]:
    """
    Normalize a sort specifier into ``(field, direction)`` pairs.

    Examples:
        >>> sort_keys("-age,name")
        [('age', -1), ('name', 1)]
        >>> sort_keys({"age": -1})
        [('age', -1)]
    """
    if not sort:
        return []
    if isinstance(sort, str):
        keys = []
        for part in filter(None, (piece.strip() for piece in sort.split(","))):
            if part.startswith("-"):
                keys.append((part[1:], -1))
            else:
                keys.append((part.lstrip("+"), 1))
        return keys
    return [(str(key), -1 if int(direction) < 0 else 1) for key, direction in sort.items()]


def sort_documents(
    docs: builtins.list[dict[str, Any]], sort: str | Mapping[str, Any] | None
) -> builtins.list[dict[str, Any]]:
    """Stable multi-key sort; documents missing a key go last in either direction."""
    result = builtins.list(docs)
    for key, direction in reversed(sort_keys(sort)):
        present = [doc for doc in result if _lookup(doc, key) not in (_MISSING, None)]
        absent = [doc for doc in result if _lookup(doc, key) in (_MISSING, None)]
        present.sort(key=lambda doc, key=key: _lookup(doc, key), reverse=direction < 0)
        result = present + absent
    return result


def _deep_merge(base: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _fields(doc: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in doc.items() if key not in RESERVED_KEYS}


# =============================================================================
# Duck Rack
# =============================================================================


class DuckRack:
    """
    Document collection of one entity.

    Example:
        >>> rack = DuckRack("user", {"schema": {"name": str}})
        >>> rack.name
        'user'
    """

    def __init__(
        self,
        name: str,
        duck_model: DuckModel | Mapping[str, Any],
        methods: Mapping[str, Any] | None = None,
        storage: DuckStorage | None = None,
    ):
        self.name = name
        self.duck_model = DuckModel.coerce(duck_model)
        self.methods: dict[str, Method] = {
            method_name: Method.coerce(method) for method_name, method in (methods or {}).items()
        }
        self.storage = storage
        self._store: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"DuckRack(name={self.name!r}, documents={len(self._store)})"

    def __len__(self) -> int:
        return len(self._store)

    @property
    def schema(self) -> Any:
        return self.duck_model.schema

    @property
    def resolver(self) -> DependencyResolver | None:
        return self.storage.resolver if self.storage else None

    def method_context(self, state: dict[str, Any] | None = None) -> MethodContext:
        """Context handed to custom method handlers of this rack."""
        return MethodContext(state=state or {}, rack=self, resolver=self.resolver)

    async def _emit(self, event: str, payload: dict[str, Any]) -> None:
        if self.storage is not None:
            await self.storage.emit(event, {"entityName": self.name, **payload})

    def _validate(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return parse_value(self.schema, _fields(data))

    def _find(self, id_or_filter: Any) -> builtins.list[dict[str, Any]]:
        if isinstance(id_or_filter, Mapping):
            return [doc for doc in self._store.values() if matches(doc, id_or_filter)]
        doc = self._store.get(str(id_or_filter))
        return [doc] if doc is not None else []

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create(
        self, entry: Mapping[str, Any], state: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Validate ``entry`` against the full schema and store it."""
        async with self._lock:
            doc = {"_id": str(entry.get("_id") or uuid4().hex), "_v": 1, **self._validate(entry)}
            if doc["_id"] in self._store:
                raise ApiError(409, f"{self.name} {doc['_id']} already exists")
            self._store[doc["_id"]] = doc
        logger.debug(f"Created {self.name} {doc['_id']}")
        await self._emit("create", {"entry": copy.deepcopy(doc)})
        return copy.deepcopy(doc)

    async def read(
        self, id_or_filter: Any, state: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Return the document with the given id (or the first matching a filter)."""
        found = self._find(id_or_filter)
        if not found:
            return None
        doc = copy.deepcopy(found[0])
        await self._emit("read", {"entry": copy.deepcopy(doc)})
        return doc

    async def update(
        self,
        id_or_filter: Any,
        patch: Mapping[str, Any] | None,
        state: dict[str, Any] | None = None,
    ) -> builtins.list[dict[str, Any]]:
        """Merge ``patch`` into every matching document; all or none of them are written."""
        async with self._lock:
            # every match is validated before any of them is written
            new_docs = [
                {
                    "_id": doc["_id"],
                    "_v": doc["_v"] + 1,
                    **self._validate(_deep_merge(_fields(doc), _fields(patch or {}))),
                }
                for doc in self._find(id_or_filter)
            ]
            for new_doc in new_docs:
                self._store[new_doc["_id"]] = new_doc
            updated = [copy.deepcopy(new_doc) for new_doc in new_docs]
        for doc in updated:
            await self._emit("update", {"entry": copy.deepcopy(doc)})
        return updated

    async def delete(
        self, id_or_filter: Any, state: dict[str, Any] | None = None
    ) -> builtins.list[dict[str, Any]]:
        """Remove every matching document and return them."""
        async with self._lock:
            removed = [self._store.pop(doc["_id"]) for doc in self._find(id_or_filter)]
        for doc in removed:
            await self._emit("delete", {"entry": copy.deepcopy(doc)})
        return removed

    async def list(
        self,
        query: Mapping[str, Any] | None = None,
        *,
        state: dict[str, Any] | None = None,
        sort: str | Mapping[str, Any] | None = None,
    ) -> builtins.list[dict[str, Any]]:
        """Documents matching ``query`` in ``sort`` order (insertion order by default)."""
        docs = sort_documents(
            [copy.deepcopy(doc) for doc in self._store.values() if matches(doc, query)], sort
        )
        await self._emit("list", {"entries": copy.deepcopy(docs)})
        return docs

    # -------------------------------------------------------------------------
    # Methods
    # -------------------------------------------------------------------------

    async def apply(
        self,
        *,
        id: Any,
        method: str,
        path: str = "",
        payload: Any = None,
        _v: int | None = None,
        validate: Callable[[dict[str, Any]], Any] | None = None,
        state: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Run the ``method`` declared at sub path ``path`` on document ``id``.

        ``path`` is the route sub path of the nested schema (``geo-point/lat``);
        dotted field paths (``geo_point.lat``) are accepted too. The handler is
        called as ``handler(sub_document, payload, MethodContext)`` and may
        mutate the sub-document in place. It runs outside the rack lock, so it
        may use the rack itself. The resulting document is validated, saved
        with a bumped ``_v`` and returned with the handler's result.

        Returns:
            ``{"entry": document, "methodResult": result}``

        Raises:
            ApiError: 404 for an unknown document, path or method, 409 when
                ``_v`` does not match the stored version or the document
                changed while the handler ran
        """
        try:
            dot_path = field_path(self.schema, path)
        except ConfigurationError as e:
            raise ApiError(404, str(e)) from e
        definition = self.duck_model.methods_at(dot_path).get(method)
        if definition is None or definition.handler is None:
            where = f" at {path}" if path else ""
            raise ApiError(404, f"Method {method}{where} not found in {self.name}")

        if is_schema(definition.input):
            payload = parse_value(definition.input, payload)

        async with self._lock:
            stored = self._store.get(str(id))
            if stored is None:
                raise ApiError(404, f"{self.name} {id} not found")
            if _v is not None and int(_v) != stored["_v"]:
                raise ApiError(409, f"Version mismatch: {self.name} {id} is at {stored['_v']}")
            working = copy.deepcopy(stored)

        target: Any = working
        for segment in filter(None, dot_path.split(".")):
            if not isinstance(target.get(segment), dict):
                target[segment] = {}
            target = target[segment]

        result = await maybe_await(definition.handler(target, payload, self.method_context(state)))
        if validate is not None:
            await maybe_await(validate(working))
        fields = self._validate(working)

        async with self._lock:
            current = self._store.get(stored["_id"])
            if current is None or current["_v"] != stored["_v"]:
                raise ApiError(409, f"{self.name} {id} changed while {method} was running")
            new_doc = {"_id": stored["_id"], "_v": stored["_v"] + 1, **fields}
            self._store[new_doc["_id"]] = new_doc

        await self._emit(
            "method",
            {"method": method, "path": path, "entry": copy.deepcopy(new_doc)},
        )
        return {"entry": copy.deepcopy(new_doc), "methodResult": result}


# =============================================================================
# Duck Storage
# =============================================================================


class DuckStorage:
    """Registry of racks and emitter of their lifecycle events."""

    def __init__(self, resolver: DependencyResolver | None = None):
        self.resolver = resolver
        self._racks: dict[str, DuckRack] = {}
        self._listeners: dict[str, builtins.list[Listener]] = defaultdict(builtins.list)

    def register_rack(self, rack: DuckRack) -> DuckRack:
        """Attach ``rack`` to this storage, replacing any rack of the same name."""
        rack.storage = self
        self._racks[rack.name] = rack
        logger.debug(f"Registered rack {rack.name}")
        return rack

    def create_rack(
        self,
        name: str,
        duck_model: DuckModel | Mapping[str, Any],
        methods: Mapping[str, Any] | None = None,
    ) -> DuckRack:
        return self.register_rack(DuckRack(name, duck_model, methods))

    def get_rack(self, name: str) -> DuckRack | None:
        return self._racks.get(name)

    def list_racks(self) -> builtins.list[str]:
        return builtins.list(self._racks)

    def on(self, event: str, listener: Listener) -> None:
        """Subscribe ``listener`` to one of ``EVENTS``."""
        if event not in EVENTS:
            raise ValueError(f"Unknown storage event '{event}'")
        self._listeners[event].append(listener)

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        for listener in self._listeners.get(event, []):
            await maybe_await(listener(payload))
