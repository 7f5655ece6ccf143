"""
Graph Executor - Runs one workflow run from the start node to completion.

The executor:
1. Picks the frontier: activated nodes whose dependencies are recorded
2. Invokes the frontier (concurrently when it has several members)
3. Waits for the whole frontier (join barrier), then merges every result
   into the ExecutionContext in frontier order (single writer)
4. Evaluates each node's outgoing edges to build the next frontier
5. Stops when the frontier is empty (completed), a node finishes the run,
   a failure is not absorbed by an on_failure edge, the invocation budget
   runs out, or the run is cancelled (failed)

The executor never raises for run-time problems; it returns a RunOutcome.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel

from flowgraph.graph.checkpoint_config import CheckpointConfig
from flowgraph.graph.context import ExecutionContext
from flowgraph.graph.edge import EdgeSpec
from flowgraph.graph.errors import ErrorKind, classify_exception
from flowgraph.graph.node import Node, consume_abandoned
from flowgraph.graph.result import Failure, NodeResult, Success
from flowgraph.schemas.checkpoint import Checkpoint

# Input key for the start node: it is activated by the workflow input, not an edge
WORKFLOW_INPUT = "<input>"


class RunStatus(StrEnum):
    """Lifecycle of a workflow run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class WorkflowError:
    """Why a run failed: the originating node, the error kind and a message."""

    node: str
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.node}: [{self.kind}] {self.message}"

    def to_dict(self) -> dict[str, str]:
        return {"node": self.node, "kind": self.kind.value, "message": self.message}


@dataclass
class RunOutcome:
    """What the executor reports back to the workflow."""

    status: RunStatus
    error: WorkflowError | None = None
    steps: int = 0
    invocations: int = 0
    finished_by: str | None = None  # node that returned finish()

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED


class CheckpointHook(Protocol):
    """Anything that can persist a checkpoint (e.g. CheckpointStore)."""

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None: ...


def _jsonable(value: Any) -> Any:
    """Best-effort JSON-safe copy of a payload for checkpoints."""

    def default(obj: Any) -> Any:
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        if isinstance(obj, Success | Failure):
            return obj.to_dict()
        return str(obj)

    return json.loads(json.dumps(value, default=default))


class GraphExecutor:
    """
    Executes workflow graphs.

    One executor drives one run; the workflow creates a fresh executor for
    every ``run()`` call.

    Example:
        executor = GraphExecutor(
            workflow_name="report",
            nodes={n.name: n for n in nodes},
            edges=edges,
            start="fetch",
            max_iterations=100,
        )
        outcome = await executor.execute(ctx)
    """

    def __init__(
        self,
        workflow_name: str,
        nodes: Mapping[str, Node],
        edges: list[EdgeSpec],
        start: str,
        max_iterations: int,
        checkpoint: CheckpointHook | None = None,
        checkpoint_config: CheckpointConfig | None = None,
    ):
        self.workflow_name = workflow_name
        self.nodes = nodes
        self.start = start
        self.max_iterations = max_iterations
        self.checkpoint = checkpoint
        self.checkpoint_config = checkpoint_config or CheckpointConfig()
        self.status = RunStatus.PENDING
        self.logger = logging.getLogger(__name__)

        self._outgoing: dict[str, list[EdgeSpec]] = {name: [] for name in nodes}
        for edge in edges:
            self._outgoing.setdefault(edge.source, []).append(edge)

        self._pending_saves: set[asyncio.Task] = set()

    def get_outgoing_edges(self, node_name: str) -> list[EdgeSpec]:
        """Edges leaving a node, in declaration order."""
        return self._outgoing.get(node_name, [])

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def execute(self, ctx: ExecutionContext) -> RunOutcome:
        self.status = RunStatus.RUNNING
        pending: dict[str, dict[str, Any]] = {self.start: {WORKFLOW_INPUT: ctx.input}}
        steps = 0
        invocations = 0
        is_clean = True

        self.logger.info(f"🚀 Starting workflow: {self.workflow_name}")
        self.logger.info(f"   Entry node: {self.start}")

        try:
            while pending:
                if ctx.cancel_token.cancelled:
                    node = next(iter(pending))
                    return self._fail(
                        steps, invocations, node, ErrorKind.CANCELLED, ctx.cancel_token.reason
                    )

                ready, waiting = self._select_frontier(pending, ctx)
                if not ready:
                    node = waiting[0]
                    missing = [
                        d
                        for d in self.nodes[node].dependencies
                        if not ctx.recorded_since_visit(d, node)
                    ]
                    return self._fail(
                        steps,
                        invocations,
                        node,
                        ErrorKind.DEPENDENCY_UNSATISFIED,
                        f"Node '{node}' depends on {missing}, which have not produced output",
                    )

                if invocations + len(ready) > self.max_iterations:
                    return self._fail(
                        steps,
                        invocations,
                        ready[0],
                        ErrorKind.ITERATION_LIMIT_EXCEEDED,
                        f"Exceeded max_iterations={self.max_iterations} "
                        f"({invocations} node invocations so far)",
                    )

                steps += 1
                inputs = {name: self._resolve_input(pending.pop(name)) for name in ready}
                results, cancelled = await self._run_frontier(steps, ready, inputs, ctx)
                invocations += len(ready)

                # Single-writer merge, in frontier order
                for name in ready:
                    result = results[name]
                    ctx.record(name, result)
                    if result.ok:
                        ctx.hooks.node_complete(name, ctx)
                    else:
                        is_clean = False
                        ctx.hooks.node_error(name, ctx, result)

                if cancelled:
                    await self._save_checkpoint(ctx, "run_failed", steps, ready, [], is_clean)
                    node = next((n for n in ready if not results[n].ok), ready[0])
                    return self._fail(
                        steps, invocations, node, ErrorKind.CANCELLED, ctx.cancel_token.reason
                    )

                activated, unabsorbed, finished = self._follow_edges(ready, inputs, results, ctx)
                for target, sources in activated.items():
                    pending.setdefault(target, {}).update(sources)

                if unabsorbed is not None:
                    await self._save_checkpoint(ctx, "run_failed", steps, ready, [], is_clean)
                    self.logger.error(f"   ✗ Unhandled failure: {unabsorbed}")
                    return self._fail(
                        steps, invocations, unabsorbed.node, unabsorbed.kind, unabsorbed.message
                    )

                if finished is not None:
                    await self._save_checkpoint(ctx, "run_complete", steps, ready, [], is_clean)
                    self.logger.info(f"✓ {finished} requested finish")
                    return self._complete(steps, invocations, ctx, finished_by=finished)

                await self._save_checkpoint(
                    ctx, "frontier_complete", steps, ready, list(pending), is_clean
                )
                await self._maybe_prune(steps)

            return self._complete(steps, invocations, ctx)
        finally:
            if self._pending_saves:
                await asyncio.gather(*self._pending_saves)

    def _select_frontier(
        self, pending: dict[str, dict[str, Any]], ctx: ExecutionContext
    ) -> tuple[list[str], list[str]]:
        """
        Split activated nodes into those that run now and those that wait.

        A node that is the edge target of another activated node is deferred
        one step, so a predecessor and its successor never run side by side.
        Nodes wait until every declared dependency has recorded a result
        since their own last invocation, so a join inside a loop fires once
        per iteration.
        """
        names = list(pending)
        targets_of_others = {
            edge.target
            for name in names
            for edge in self.get_outgoing_edges(name)
            if edge.target != name
        }
        runnable = [n for n in names if n not in targets_of_others] or names[:1]

        ready: list[str] = []
        waiting: list[str] = []
        for name in runnable:
            deps = self.nodes[name].dependencies
            if all(ctx.recorded_since_visit(dep, name) for dep in deps):
                ready.append(name)
            else:
                waiting.append(name)
        return ready, waiting

    @staticmethod
    def _resolve_input(sources: dict[str, Any]) -> Any:
        """One activating source passes its payload; several pass {source: payload}."""
        if len(sources) == 1:
            return next(iter(sources.values()))
        return dict(sources)

    async def _run_frontier(
        self,
        step: int,
        ready: list[str],
        inputs: dict[str, Any],
        ctx: ExecutionContext,
    ) -> tuple[dict[str, NodeResult], bool]:
        """
        Invoke every ready node and wait for all of them (or cancellation).

        Returns the result per node and whether the run was cancelled while
        the frontier was in flight.
        """
        if len(ready) > 1:
            self.logger.info(f"\n▶ Step {step}: ⑂ {len(ready)} nodes in parallel")
            for name in ready:
                self.logger.info(f"      • {name}")
        else:
            self.logger.info(f"\n▶ Step {step}: {ready[0]}")

        tasks: dict[str, asyncio.Task] = {}
        for name in ready:
            ctx.mark_visit(name)
            ctx.hooks.node_start(name, ctx)
            tasks[name] = asyncio.create_task(
                self.nodes[name].run(inputs[name], ctx), name=f"{self.workflow_name}:{name}"
            )

        cancel_waiter = asyncio.ensure_future(ctx.cancel_token.wait())
        remaining = set(tasks.values())
        cancelled = False
        try:
            while remaining:
                done, _ = await asyncio.wait(
                    remaining | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                remaining -= done
                if cancel_waiter in done:
                    cancelled = True
                    break
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            raise
        finally:
            if not cancel_waiter.done():
                cancel_waiter.cancel()

        results: dict[str, NodeResult] = {}
        for name, task in tasks.items():
            if task.done() and not task.cancelled():
                results[name] = self._task_result(name, task)
                continue
            # Abandoned: cancel cooperatively, never wait for it
            task.cancel()
            task.add_done_callback(consume_abandoned)
            reason = ctx.cancel_token.reason or "cancelled"
            results[name] = Failure(ErrorKind.CANCELLED, reason, node=name)
            self.logger.warning(f"   ⊘ {name}: abandoned ({reason})")

        for name in ready:
            result = results[name]
            if result.ok:
                self.logger.info(f"   ✓ {name} succeeded")
            else:
                self.logger.error(f"   ✗ {name} failed: [{result.kind}] {result.message}")
        return results, cancelled

    def _task_result(self, name: str, task: asyncio.Task) -> NodeResult:
        exc = task.exception()
        if exc is not None:
            # Node.run never raises; only a misbehaving run() override gets here
            self.logger.error(f"   ✗ {name} raised {type(exc).__name__}: {exc}")
            return Failure(classify_exception(exc), f"{type(exc).__name__}: {exc}", node=name)
        return task.result().with_node(name)

    def _follow_edges(
        self,
        ready: list[str],
        inputs: dict[str, Any],
        results: dict[str, NodeResult],
        ctx: ExecutionContext,
    ) -> tuple[dict[str, dict[str, Any]], Failure | None, str | None]:
        """
        Evaluate outgoing edges of every node merged this step.

        Returns (activated targets with their inputs per source, the first
        failure no on_failure edge absorbed, the first node that requested
        finish).
        """
        activated: dict[str, dict[str, Any]] = {}
        unabsorbed: Failure | None = None
        finished: str | None = None

        for name in ready:
            result = results[name]
            node = self.nodes[name]

            if isinstance(result, Success) and result.finish:
                finished = finished or name
                continue

            taken = [e for e in self.get_outgoing_edges(name) if e.should_traverse(result, ctx)]

            if isinstance(result, Failure):
                if not taken:
                    unabsorbed = unabsorbed or result.with_node(name)
                    continue
                payload: Any = result
            elif node.branching:
                self.logger.info(f"   ⑂ {name} selected branch {result.value!r}")
                payload = inputs[name]
            else:
                payload = result.value

            for edge in taken:
                self.logger.info(f"   → {edge.label} ({edge.condition})")
                activated.setdefault(edge.target, {})[name] = payload

            if not taken and not self.get_outgoing_edges(name):
                self.logger.info(f"   → {name}: no outgoing edges")

        return activated, unabsorbed, finished

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _complete(
        self, steps: int, invocations: int, ctx: ExecutionContext, finished_by: str | None = None
    ) -> RunOutcome:
        self.status = RunStatus.COMPLETED
        self.logger.info("\n✓ Execution complete!")
        self.logger.info(f"   Steps: {steps}")
        self.logger.info(f"   Path: {' → '.join(ctx.path)}")
        return RunOutcome(
            RunStatus.COMPLETED, steps=steps, invocations=invocations, finished_by=finished_by
        )

    def _fail(
        self, steps: int, invocations: int, node: str, kind: ErrorKind, message: str
    ) -> RunOutcome:
        self.status = RunStatus.FAILED
        error = WorkflowError(node=node, kind=kind, message=message or str(kind))
        self.logger.error(f"\n✗ Execution failed: {error}")
        return RunOutcome(RunStatus.FAILED, error=error, steps=steps, invocations=invocations)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def _create_checkpoint(
        self,
        ctx: ExecutionContext,
        checkpoint_type: str,
        step: int,
        frontier: list[str],
        next_frontier: list[str],
        is_clean: bool,
    ) -> Checkpoint:
        outputs = {}
        if self.checkpoint_config.include_outputs:
            outputs = {name: _jsonable(r.to_dict()) for name, r in ctx.outputs.items()}
        return Checkpoint.create(
            checkpoint_type=checkpoint_type,
            execution_id=ctx.execution_id,
            workflow=self.workflow_name,
            step=step,
            frontier=frontier,
            next_frontier=next_frontier,
            execution_path=ctx.path,
            visit_counts=ctx.visit_counts,
            outputs=outputs,
            is_clean=is_clean,
        )

    async def _save_checkpoint(
        self,
        ctx: ExecutionContext,
        checkpoint_type: str,
        step: int,
        frontier: list[str],
        next_frontier: list[str],
        is_clean: bool,
    ) -> None:
        if self.checkpoint is None or not self.checkpoint_config.should_checkpoint():
            return
        try:
            checkpoint = self._create_checkpoint(
                ctx, checkpoint_type, step, frontier, next_frontier, is_clean
            )
        except (TypeError, ValueError) as e:
            self.logger.warning(f"⚠ Could not build checkpoint for step {step}: {e}")
            return

        if self.checkpoint_config.async_checkpoint:
            task = asyncio.ensure_future(self._write_checkpoint(checkpoint))
            self._pending_saves.add(task)
            task.add_done_callback(self._pending_saves.discard)
        else:
            await self._write_checkpoint(checkpoint)

    async def _write_checkpoint(self, checkpoint: Checkpoint) -> None:
        try:
            await self.checkpoint.save_checkpoint(checkpoint)
        except Exception as e:
            self.logger.warning(f"⚠ Checkpoint {checkpoint.checkpoint_id} failed to save: {e}")
        else:
            self.logger.debug(f"💾 Saved checkpoint {checkpoint.checkpoint_id}")

    async def _maybe_prune(self, step: int) -> None:
        if self.checkpoint is None or not self.checkpoint_config.should_prune_checkpoints(step):
            return
        prune = getattr(self.checkpoint, "prune_checkpoints", None)
        if prune is None:
            return
        try:
            await prune(max_age_days=self.checkpoint_config.checkpoint_max_age_days)
        except Exception as e:
            self.logger.warning(f"⚠ Checkpoint pruning failed: {e}")
