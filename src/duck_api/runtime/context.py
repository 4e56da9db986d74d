"""
Per-request context and middleware composition.

Every bound operation runs as a small pipeline of ``(ctx, call_next)``
middleware over a fresh ``RequestContext``. Handlers write ``ctx.response``;
a context whose response is still ``UNSET`` once the pipeline finishes was
not handled and falls through to the next route.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from starlette.requests import Request

    from duck_api.runtime.resolver import DependencyResolver


class _Unset:
    """Marker for a response nobody wrote yet."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class RequestContext:
    """
    Mutable state of one request.

    Attributes:
        request: The underlying Starlette request (``None`` in unit tests)
        params: Path parameters (``{"id": "..."}``)
        get: Query string values, replaced by parsed data after validation
        body: Request body, replaced by parsed data after validation
        state: Arbitrary request state, e.g. ``{"user": ...}``
        response: Value the handler produced; ``UNSET`` until written
        leave_as_is: Skip the ``{code, data}`` envelope
        session: Session helpers installed by auth plugins
        resolver: Dependency resolver of the running app
    """

    request: Request | None = None
    params: dict[str, Any] = field(default_factory=dict)
    get: Any = field(default_factory=dict)
    body: Any = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    response: Any = UNSET
    leave_as_is: bool = False
    session: Any = None
    resolver: DependencyResolver | None = None

    @property
    def handled(self) -> bool:
        """Whether a handler wrote a response."""
        return self.response is not UNSET


@dataclass(frozen=True)
class MethodContext:
    """Second argument of custom method handlers."""

    state: dict[str, Any]
    rack: Any = None
    resolver: DependencyResolver | None = None

    def resolve(self, kind: str, name: str) -> Any:
        """Shortcut for ``resolver.resolve(kind, name)``."""
        if self.resolver is None:
            raise LookupError("No dependency resolver configured")
        return self.resolver.resolve(kind, name)


# =============================================================================
# Middleware
# =============================================================================

CallNext = Callable[[], Awaitable[None]]
Middleware = Callable[[RequestContext, CallNext], Awaitable[None]]


async def maybe_await(value: Any) -> Any:
    """Await ``value`` when it is awaitable, return it otherwise."""
    if inspect.isawaitable(value):
        return await value
    return value


async def _done() -> None:
    return None


def compose(middlewares: Sequence[Middleware]) -> Middleware:
    """
    Chain middleware so each one decides when (and whether) to call the next.

    The returned middleware runs ``middlewares`` in order and then its own
    ``call_next``.
    """
    chain = tuple(middlewares)

    async def run(ctx: RequestContext, call_next: CallNext = _done) -> None:
        async def dispatch(index: int) -> None:
            if index == len(chain):
                await call_next()
                return
            await chain[index](ctx, lambda: dispatch(index + 1))

        await dispatch(0)

    return run


def handler_middleware(handler: Callable[..., Any]) -> Middleware:
    """Wrap a ``(ctx) -> None`` handler as the last stage of a pipeline."""

    async def run(ctx: RequestContext, call_next: CallNext) -> None:
        await maybe_await(handler(ctx))

    return run
