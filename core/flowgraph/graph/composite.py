"""
Composite nodes - nodes that run other nodes concurrently inside one step.

Both composites are join barriers: the executor sees a single node that
finishes only when every child has finished. Child results travel back in
``NodeResult.children`` and are merged into the context by the executor,
so children never write to the context themselves.

- ParallelGroupNode: N independent children, same input, output
  ``{child_name: value}``
- MapReduceNode: one mapper per array element (bounded concurrency, results
  in input order), then one reducer over the ordered list
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from flowgraph.config import get_map_max_concurrency
from flowgraph.graph.errors import ErrorKind, NodeError, classify_exception
from flowgraph.graph.node import Node, call_maybe_async, consume_abandoned
from flowgraph.graph.result import Failure, NodeResult, Success

if TYPE_CHECKING:
    from flowgraph.graph.context import ExecutionContext

logger = logging.getLogger(__name__)


class ElementFailurePolicy(StrEnum):
    """What a map-reduce node does when one element fails."""

    FAIL_FAST = "fail_fast"  # Cancel outstanding elements, fail the node
    COLLECT = "collect"  # Hand every element's NodeResult to the reducer


async def _join(tasks: list[asyncio.Task], fail_fast: bool) -> None:
    """
    Wait for every task, or only until the first failure when ``fail_fast``.

    Tasks still running after a fail-fast stop are cancelled and abandoned.
    """
    if not tasks:
        return
    try:
        if not fail_fast:
            await asyncio.wait(tasks)
            return

        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            if any(not _outcome(t, "").ok for t in done):
                for task in pending:
                    task.cancel()
                    task.add_done_callback(consume_abandoned)
                return
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise


def _outcome(task: asyncio.Task, name: str) -> NodeResult:
    """Result of a finished child task; unfinished or cancelled tasks count as cancelled."""
    if not task.done() or task.cancelled():
        return Failure(ErrorKind.CANCELLED, "cancelled after a sibling failed", node=name)
    exc = task.exception()
    if exc is not None:
        return Failure(classify_exception(exc), f"{type(exc).__name__}: {exc}", node=name)
    return task.result()


async def _run_child(node: Node, name: str, input: Any, ctx: "ExecutionContext") -> NodeResult:
    """Run a child node under ``name``, firing its start and outcome hooks."""
    ctx.hooks.node_start(name, ctx)
    result = (await node.run(input, ctx)).with_node(name)
    _fire_outcome(name, result, ctx)
    return result


def _fire_outcome(name: str, result: NodeResult, ctx: "ExecutionContext") -> None:
    if result.ok:
        ctx.hooks.node_complete(name, ctx)
    else:
        ctx.hooks.node_error(name, ctx, result)


def _collect(task: asyncio.Task, name: str, ctx: "ExecutionContext") -> NodeResult:
    """Outcome of a child task; fires the error hook for children that never returned."""
    result = _outcome(task, name).with_node(name)
    if task.cancelled() or not task.done() or task.exception() is not None:
        _fire_outcome(name, result, ctx)
    return result


def _first_failure(results: Iterable[NodeResult]) -> Failure | None:
    failures = [r for r in results if isinstance(r, Failure)]
    # A cancelled sibling is a consequence, not the cause
    for failure in failures:
        if failure.kind != ErrorKind.CANCELLED:
            return failure
    return failures[0] if failures else None


class ParallelGroupNode(Node):
    """
    Run independent children concurrently with the group's input.

    Every child result is recorded under the child's own name. If any child
    fails the group fails with the kind of the first failing child (in
    declaration order). With ``fail_fast`` the remaining children are
    cancelled on the first failure and recorded as cancelled.

    Example:
        ParallelGroupNode("research", [web_search, db_lookup, summarize_docs])
    """

    def __init__(
        self,
        name: str,
        children: Iterable[Node],
        fail_fast: bool = False,
        **kwargs: Any,
    ):
        kwargs.setdefault("fan_out", True)
        super().__init__(name, **kwargs)
        self.children = list(children)
        if not self.children:
            raise ValueError(f"ParallelGroupNode '{name}' needs at least one child")
        self.fail_fast = fail_fast

    def result_names(self) -> list[str]:
        names = [self.name]
        for child in self.children:
            names.extend(child.result_names())
        return names

    async def execute(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        logger.info(f"   ⑂ Parallel group {self.name}: {len(self.children)} children")
        tasks = [
            asyncio.ensure_future(_run_child(child, child.name, input, ctx))
            for child in self.children
        ]
        await _join(tasks, self.fail_fast)

        results: dict[str, NodeResult] = {}
        for child, task in zip(self.children, tasks, strict=True):
            results[child.name] = _collect(task, child.name, ctx)

        failure = _first_failure(results.values())
        if failure is None:
            logger.info(f"   ⑃ Parallel group {self.name}: all {len(results)} children succeeded")
            return Success({name: r.value for name, r in results.items()}, children=results)

        failed = [name for name, r in results.items() if not r.ok]
        logger.warning(f"   ✗ Parallel group {self.name}: children {failed} failed")
        return Failure(
            failure.kind,
            f"Child '{failure.node}' failed: {failure.message}",
            retriable=failure.retriable,
            children=results,
        )


class MapReduceNode(Node):
    """
    Apply ``mapper`` to every element of an array, then ``reducer`` to the results.

    ``items(input, ctx)`` selects the array (default: the input itself).
    Elements run concurrently, at most ``max_concurrency`` at a time, and the
    reducer always sees them in input order. Element results are recorded as
    ``"{mapper}[{index}]"``, the reducer's under its own name.

    With ``ElementFailurePolicy.FAIL_FAST`` the reducer receives the list of
    element values; with ``COLLECT`` it receives the list of element
    NodeResults, failures included.
    """

    def __init__(
        self,
        name: str,
        mapper: Node,
        reducer: Node,
        items: Callable[..., Any] | None = None,
        max_concurrency: int | None = None,
        on_element_failure: ElementFailurePolicy = ElementFailurePolicy.FAIL_FAST,
        **kwargs: Any,
    ):
        kwargs.setdefault("fan_out", True)
        super().__init__(name, **kwargs)
        self.mapper = mapper
        self.reducer = reducer
        self.items = items
        self.max_concurrency = max_concurrency or get_map_max_concurrency()
        if self.max_concurrency < 1:
            raise ValueError(f"MapReduceNode '{name}': max_concurrency must be >= 1")
        self.on_element_failure = ElementFailurePolicy(on_element_failure)

    def result_names(self) -> list[str]:
        return [self.name, *self.mapper.result_names(), *self.reducer.result_names()]

    def element_name(self, index: int) -> str:
        return f"{self.mapper.name}[{index}]"

    async def _elements(self, input: Any, ctx: "ExecutionContext") -> list[Any]:
        elements = input if self.items is None else await call_maybe_async(self.items, input, ctx)
        if isinstance(elements, str | bytes | Mapping) or not isinstance(elements, Iterable):
            raise NodeError(
                f"Map-reduce '{self.name}' expects an array, got {type(elements).__name__}",
                kind=ErrorKind.VALIDATION,
            )
        return list(elements)

    async def execute(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        elements = await self._elements(input, ctx)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_element(index: int, element: Any) -> NodeResult:
            async with semaphore:
                if ctx.cancel_token.cancelled:
                    return Failure(ErrorKind.CANCELLED, ctx.cancel_token.reason or "cancelled")
                return await _run_child(self.mapper, self.element_name(index), element, ctx)

        logger.info(
            f"   ⑂ Map {self.mapper.name} over {len(elements)} elements "
            f"(max concurrency {self.max_concurrency})"
        )
        tasks = [asyncio.ensure_future(run_element(i, e)) for i, e in enumerate(elements)]
        fail_fast = self.on_element_failure == ElementFailurePolicy.FAIL_FAST
        await _join(tasks, fail_fast)

        ordered = [_collect(task, self.element_name(i), ctx) for i, task in enumerate(tasks)]
        children: dict[str, NodeResult] = {r.node: r for r in ordered}

        failure = _first_failure(ordered)
        if failure is not None and fail_fast:
            logger.warning(f"   ✗ Map {self.mapper.name}: element {failure.node} failed")
            return Failure(
                failure.kind,
                f"Element '{failure.node}' failed: {failure.message}",
                retriable=failure.retriable,
                children=children,
            )

        reduce_input = [r.value for r in ordered] if fail_fast else ordered
        reduced = await _run_child(self.reducer, self.reducer.name, reduce_input, ctx)
        children[self.reducer.name] = reduced
        logger.info(f"   ⑃ Reduce {self.reducer.name}: {'ok' if reduced.ok else 'failed'}")

        if isinstance(reduced, Failure):
            return Failure(
                reduced.kind,
                f"Reducer '{self.reducer.name}' failed: {reduced.message}",
                retriable=reduced.retriable,
                children=children,
            )
        return Success(reduced.value, children=children)
