"""
Response access filtering.

An access hook is called with the request context before the handler runs.
Its result decides what the client gets back:

- ``True``: the response as produced
- ``False``: an empty object
- a list of dotted field paths: only those fields (per element for lists)
- a callable: called with the produced response, its result applied as above
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from duck_api.runtime.context import CallNext, Middleware, RequestContext, maybe_await


def _pick_path(source: Mapping[str, Any], target: dict[str, Any], path: list[str]) -> None:
    head, *rest = path
    if head not in source:
        return
    value = source[head]
    if not rest:
        target[head] = value
        return
    if isinstance(value, Mapping):
        child = target.setdefault(head, {})
        if isinstance(child, dict):
            _pick_path(value, child, rest)


def pick(value: Any, paths: Iterable[str]) -> Any:
    """
    Keep only ``paths`` of a mapping.

    Examples:
        >>> pick({"name": "Ann", "address": {"zip": "1", "city": "X"}}, ["address.zip"])
        {'address': {'zip': '1'}}
    """
    if not isinstance(value, Mapping):
        return {}
    picked: dict[str, Any] = {}
    for path in paths:
        _pick_path(value, picked, str(path).split("."))
    return picked


def resolve_result_paths(paths_to_pick: Any, body: Any) -> Any:
    """Apply an access decision (boolean or field list) to ``body``."""
    if isinstance(paths_to_pick, bool):
        return body if paths_to_pick else {}
    if paths_to_pick is None:
        return body
    if isinstance(paths_to_pick, str):
        paths_to_pick = [paths_to_pick]
    if isinstance(body, list):
        return [pick(item, paths_to_pick) for item in body]
    return pick(body, paths_to_pick)


def response_access_middleware(access: Callable[..., Any] | None) -> Middleware:
    """Build the middleware enforcing ``access``; ``None`` passes everything through."""

    async def run(ctx: RequestContext, call_next: CallNext) -> None:
        if access is None:
            await call_next()
            return

        paths_to_pick = await maybe_await(access(ctx))
        await call_next()

        if not ctx.handled or ctx.response is None:
            return
        if callable(paths_to_pick):
            decision = await maybe_await(paths_to_pick(ctx.response))
            ctx.response = resolve_result_paths(decision, ctx.response)
        else:
            ctx.response = resolve_result_paths(paths_to_pick, ctx.response)

    return run
