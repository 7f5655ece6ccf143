"""Tests for ExecutionContext, CancellationToken and lifecycle hook dispatch."""

import asyncio

import pytest
from pydantic import BaseModel

from flowgraph.graph.context import CancellationToken, ExecutionContext
from flowgraph.graph.errors import ErrorKind, NodeError
from flowgraph.graph.hooks import HookDispatcher, LifecycleHooks
from flowgraph.graph.result import Failure, Success


class Report(BaseModel):
    title: str
    score: float


@pytest.fixture
def ctx():
    return ExecutionContext("wf", input={"n": 1})


class TestExecutionContext:
    def test_execution_id_is_generated(self, ctx):
        assert ctx.execution_id
        assert ExecutionContext("wf").execution_id != ctx.execution_id

    def test_value_of_recorded_success(self, ctx):
        ctx.record("fetch", Success({"n": 5}))
        assert ctx.has("fetch")
        assert ctx.succeeded("fetch")
        assert ctx.value("fetch") == {"n": 5}

    def test_value_missing_raises_not_found(self, ctx):
        with pytest.raises(NodeError) as exc_info:
            ctx.value("nope")
        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert ctx.value("nope", None) is None

    def test_value_of_failure_raises_dependency_unsatisfied(self, ctx):
        ctx.record("fetch", Failure(ErrorKind.NETWORK, "down"))
        assert ctx.has("fetch")
        assert not ctx.succeeded("fetch")
        with pytest.raises(NodeError) as exc_info:
            ctx.value("fetch")
        assert exc_info.value.kind == ErrorKind.DEPENDENCY_UNSATISFIED
        assert ctx.value("fetch", "fallback") == "fallback"

    def test_typed_output_validates_dicts(self, ctx):
        ctx.record("analyze", Success({"title": "t", "score": 0.5}))
        report = ctx.output("analyze", Report)
        assert isinstance(report, Report)
        assert report.score == 0.5

    def test_typed_output_mismatch(self, ctx):
        ctx.record("count", Success("seven"))
        with pytest.raises(NodeError) as exc_info:
            ctx.output("count", int)
        assert exc_info.value.kind == ErrorKind.VALIDATION

    def test_last_write_wins_and_history_is_kept(self, ctx):
        ctx.record("refine", Success(1))
        ctx.record("refine", Success(2))
        assert ctx.value("refine") == 2
        assert [r.value for r in ctx.history("refine")] == [1, 2]

    def test_children_are_recorded(self, ctx):
        ctx.record("group", Success({"a": 1}, children={"a": Success(1, node="a")}))
        assert ctx.value("a") == 1
        assert ctx.values() == {"group": {"a": 1}, "a": 1}

    def test_mark_visit_tracks_path_and_iterations(self, ctx):
        ctx.mark_visit("a")
        ctx.mark_visit("b")
        ctx.mark_visit("a")
        assert ctx.path == ["a", "b", "a"]
        assert ctx.iteration("a") == 2
        assert ctx.loop_state["a"].iteration == 2
        assert "b" not in ctx.loop_state

    def test_snapshot_is_a_copy(self, ctx):
        ctx.record("a", Success(1))
        snapshot = ctx.snapshot()
        ctx.record("b", Success(2))
        assert "b" not in snapshot


class TestCancellationToken:
    def test_cancel_sets_reason_once(self):
        token = CancellationToken()
        assert not token.cancelled
        token.cancel("user pressed stop")
        token.cancel("second reason")
        assert token.cancelled
        assert token.reason == "user pressed stop"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(NodeError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.kind == ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self):
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)


class TestHookDispatcher:
    def test_sync_hooks_are_called(self, ctx):
        calls = []
        dispatcher = HookDispatcher(
            LifecycleHooks(
                on_node_start=lambda name, c: calls.append(("start", name)),
                on_node_error=lambda name, c, failure: calls.append(("error", name, failure.kind)),
            )
        )
        dispatcher.node_start("a", ctx)
        dispatcher.node_complete("a", ctx)
        dispatcher.node_error("b", ctx, Failure(ErrorKind.TIMEOUT, "slow"))
        assert calls == [("start", "a"), ("error", "b", ErrorKind.TIMEOUT)]

    def test_raising_hook_is_swallowed(self, ctx, caplog):
        def boom(name, c):
            raise RuntimeError("hook exploded")

        dispatcher = HookDispatcher(LifecycleHooks(on_node_start=boom))
        dispatcher.node_start("a", ctx)
        assert "hook exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_async_hooks_are_scheduled(self, ctx):
        seen = asyncio.Event()

        async def on_complete(name, c):
            seen.set()

        dispatcher = HookDispatcher(LifecycleHooks(on_complete=on_complete))
        dispatcher.complete("wf", ctx)
        await asyncio.wait_for(seen.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_failing_async_hook_is_logged(self, ctx, caplog):
        async def on_complete(name, c):
            raise RuntimeError("async hook exploded")

        dispatcher = HookDispatcher(LifecycleHooks(on_complete=on_complete))
        dispatcher.complete("wf", ctx)
        for _ in range(5):
            await asyncio.sleep(0)
        assert "async hook exploded" in caplog.text
