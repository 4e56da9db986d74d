"""Tests for request contexts and middleware composition."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from duck_api.runtime.context import (
    UNSET,
    MethodContext,
    RequestContext,
    compose,
    handler_middleware,
    maybe_await,
)


class TestRequestContext:
    def test_starts_unhandled(self) -> None:
        ctx = RequestContext()
        assert ctx.response is UNSET
        assert not ctx.handled

    def test_none_is_a_written_response(self) -> None:
        ctx = RequestContext()
        ctx.response = None
        assert ctx.handled

    def test_unset_is_a_falsy_singleton(self) -> None:
        assert not UNSET
        assert repr(UNSET) == "UNSET"
        assert type(UNSET)() is UNSET


class TestMethodContext:
    def test_resolve_delegates(self) -> None:
        resolver = MagicMock()
        resolver.resolve.return_value = "rack"
        ctx = MethodContext(state={}, resolver=resolver)
        assert ctx.resolve("rack", "user") == "rack"
        resolver.resolve.assert_called_once_with("rack", "user")

    def test_resolve_without_resolver(self) -> None:
        with pytest.raises(LookupError):
            MethodContext(state={}).resolve("rack", "user")


class TestCompose:
    @pytest.mark.asyncio
    async def test_runs_in_order(self) -> None:
        calls: list[str] = []

        def stage(name: str) -> Any:
            async def run(ctx: RequestContext, call_next: Any) -> None:
                calls.append(f"{name}:before")
                await call_next()
                calls.append(f"{name}:after")

            return run

        pipeline = compose([stage("a"), stage("b")])
        await pipeline(RequestContext())
        assert calls == ["a:before", "b:before", "b:after", "a:after"]

    @pytest.mark.asyncio
    async def test_stage_can_stop_the_chain(self) -> None:
        async def stop(ctx: RequestContext, call_next: Any) -> None:
            ctx.response = "stopped"

        handler = MagicMock()
        pipeline = compose([stop, handler_middleware(handler)])
        ctx = RequestContext()
        await pipeline(ctx)
        assert ctx.response == "stopped"
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self) -> None:
        def sync_handler(ctx: RequestContext) -> None:
            ctx.response = "sync"

        async def async_handler(ctx: RequestContext) -> None:
            ctx.response = "async"

        for handler, expected in ((sync_handler, "sync"), (async_handler, "async")):
            ctx = RequestContext()
            await compose([handler_middleware(handler)])(ctx)
            assert ctx.response == expected

    @pytest.mark.asyncio
    async def test_maybe_await(self) -> None:
        async def value() -> int:
            return 1

        assert await maybe_await(value()) == 1
        assert await maybe_await(2) == 2
