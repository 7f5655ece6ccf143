"""
Workflow - the user-facing aggregate of nodes, edges and run settings.

A Workflow is built (and validated) once and reused across many runs. Each
``run()`` gets its own ExecutionContext and GraphExecutor, so concurrent
runs of one workflow never share state; the only cross-run state lives in
circuit breakers the caller chose to share.

Example:
    workflow = Workflow(
        name="report",
        nodes=[fetch, transform, report],
        edges=[("fetch", "transform"), ("transform", "report")],
        start="fetch",
    )
    result = await workflow.run({})
    assert result.final_output == "value=10"
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from flowgraph.config import get_max_iterations
from flowgraph.graph.checkpoint_config import CheckpointConfig
from flowgraph.graph.composite import ParallelGroupNode
from flowgraph.graph.context import CancellationToken, ExecutionContext
from flowgraph.graph.edge import EdgeCondition, EdgeSpec
from flowgraph.graph.errors import ErrorKind, WorkflowDefinitionError, classify_exception
from flowgraph.graph.executor import (
    WORKFLOW_INPUT,
    CheckpointHook,
    GraphExecutor,
    RunOutcome,
    RunStatus,
    WorkflowError,
)
from flowgraph.graph.hooks import HookDispatcher, LifecycleHooks
from flowgraph.graph.node import Node, NodeWrapper
from flowgraph.graph.result import NodeResult, Success
from flowgraph.observability import scoped_trace_context

logger = logging.getLogger(__name__)

EdgeLike = EdgeSpec | tuple[str, str] | dict[str, Any]


@dataclass
class WorkflowResult:
    """Outcome of one workflow run."""

    status: RunStatus
    outputs: dict[str, NodeResult]
    final_output: Any
    duration_ms: float
    execution_id: str
    error: WorkflowError | None = None
    path: list[str] = field(default_factory=list)
    visit_counts: dict[str, int] = field(default_factory=dict)
    invocations: int = 0

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def value(self, name: str, default: Any = None) -> Any:
        """Success payload recorded for a node, or ``default``."""
        result = self.outputs.get(name)
        return result.value if isinstance(result, Success) else default

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "execution_id": self.execution_id,
            "duration_ms": self.duration_ms,
            "final_output": self.final_output,
            "error": self.error.to_dict() if self.error else None,
            "path": list(self.path),
            "invocations": self.invocations,
            "outputs": {name: r.to_dict() for name, r in self.outputs.items()},
        }


def _coerce_edge(edge: EdgeLike) -> EdgeSpec:
    if isinstance(edge, EdgeSpec):
        return edge
    if isinstance(edge, tuple):
        source, target = edge
        return EdgeSpec(source=source, target=target)
    return EdgeSpec.model_validate(edge)


def _unwrap(node: Node) -> Node:
    while isinstance(node, NodeWrapper):
        node = node.inner
    return node


class Workflow:
    """
    A validated, reusable workflow graph.

    Args:
        name: Workflow name (used in logs, checkpoints and hooks)
        nodes: Top-level nodes; names must be unique, including nested children
        edges: EdgeSpecs, ``(source, target)`` tuples or EdgeSpec dicts
        start: Name of the node that receives the workflow input
        input_schema: Pydantic model or callable applied to the input once per run
        output_node: Node whose payload becomes ``final_output``; defaults to
            the unique node without outgoing edges
        hooks: Lifecycle callbacks
        max_iterations: Node-invocation budget per run (default from config)
        checkpoint: Object with ``async save_checkpoint(checkpoint)``
        checkpoint_config: When and how checkpoints are taken

    Raises:
        WorkflowDefinitionError: The graph is invalid (every problem is listed)
    """

    def __init__(
        self,
        name: str,
        nodes: Iterable[Node],
        edges: Iterable[EdgeLike],
        start: str,
        *,
        input_schema: type[BaseModel] | Callable[[Any], Any] | None = None,
        output_node: str | None = None,
        hooks: LifecycleHooks | None = None,
        max_iterations: int | None = None,
        checkpoint: CheckpointHook | None = None,
        checkpoint_config: CheckpointConfig | None = None,
        description: str = "",
    ):
        self.name = name
        self.node_list: list[Node] = list(nodes)
        self.nodes: dict[str, Node] = {}
        for node in self.node_list:
            self.nodes.setdefault(node.name, node)
        self.edges: list[EdgeSpec] = [_coerce_edge(e) for e in edges]
        self.start = start
        self.input_schema = input_schema
        self.hooks = hooks
        self.max_iterations = max_iterations if max_iterations is not None else get_max_iterations()
        self.checkpoint = checkpoint
        self.checkpoint_config = checkpoint_config
        self.description = description

        self._declared_output = output_node
        errors = self.validate()
        if errors:
            raise WorkflowDefinitionError(name, errors)
        self.output_node: str = output_node or self._sink_nodes()[0]

    def __repr__(self) -> str:
        return f"Workflow({self.name!r}, nodes={list(self.nodes)}, start={self.start!r})"

    # ------------------------------------------------------------------
    # Graph queries
    # ------------------------------------------------------------------

    def get_node(self, name: str) -> Node | None:
        return self.nodes.get(name)

    def get_outgoing_edges(self, name: str) -> list[EdgeSpec]:
        """Edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == name]

    def get_incoming_edges(self, name: str) -> list[EdgeSpec]:
        return [e for e in self.edges if e.target == name]

    def detect_fan_out_nodes(self) -> dict[str, list[str]]:
        """Nodes with several unconditional edges -> their concurrent targets."""
        fan_outs: dict[str, list[str]] = {}
        for name in self.nodes:
            targets = [e.target for e in self.get_outgoing_edges(name) if e.unconditional]
            if len(targets) > 1:
                fan_outs[name] = targets
        return fan_outs

    def _sink_nodes(self) -> list[str]:
        sources = {e.source for e in self.edges}
        return [name for name in self.nodes if name not in sources]

    def _reachable(self) -> set[str]:
        reachable: set[str] = set()
        to_visit = [self.start]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            to_visit.extend(e.target for e in self.get_outgoing_edges(current))
        return reachable

    def _unconditional_cycle(self) -> list[str] | None:
        """A cycle made only of on_success edges (it could never exit), or None."""
        graph: dict[str, list[str]] = {name: [] for name in self.nodes}
        for edge in self.edges:
            if edge.unconditional and edge.source in graph:
                graph[edge.source].append(edge.target)

        visiting: list[str] = []
        done: set[str] = set()

        def visit(name: str) -> list[str] | None:
            if name in visiting:
                return visiting[visiting.index(name) :] + [name]
            if name in done or name not in graph:
                return None
            visiting.append(name)
            for target in graph[name]:
                cycle = visit(target)
                if cycle:
                    return cycle
            visiting.pop()
            done.add(name)
            return None

        for name in graph:
            cycle = visit(name)
            if cycle:
                return cycle
        return None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        """Validate the graph structure; returns every problem found."""
        errors: list[str] = []

        if not self.node_list:
            return ["Workflow has no nodes"]

        # Unique names, nested children included
        seen: set[str] = set()
        for node in self.node_list:
            for result_name in node.result_names():
                if result_name in seen:
                    errors.append(f"Duplicate node name '{result_name}'")
                seen.add(result_name)

        if self.start not in self.nodes:
            errors.append(f"Start node '{self.start}' not found")

        for edge in self.edges:
            if edge.source not in self.nodes:
                errors.append(f"Edge '{edge.label}' references missing source '{edge.source}'")
            if edge.target not in self.nodes:
                errors.append(f"Edge '{edge.label}' references missing target '{edge.target}'")

        for node in self.node_list:
            for dep in node.dependencies:
                if dep not in seen:
                    errors.append(f"Node '{node.name}' depends on unknown node '{dep}'")
                elif dep == node.name:
                    errors.append(f"Node '{node.name}' depends on itself")

        # Edge shape per source node
        for name, node in self.nodes.items():
            outgoing = self.get_outgoing_edges(name)
            unconditional = [e for e in outgoing if e.unconditional]
            if len(unconditional) > 1 and not node.fan_out:
                errors.append(
                    f"Node '{name}' has {len(unconditional)} unconditional edges "
                    f"({[e.target for e in unconditional]}); only fan-out nodes may have "
                    f"several. Pass fan_out=True or add conditions."
                )
            for edge in outgoing:
                if edge.condition != EdgeCondition.BRANCH:
                    continue
                if not node.branching:
                    errors.append(
                        f"Branch edge '{edge.label}' leaves '{name}', which is not a "
                        f"condition or switch node"
                    )
                elif edge.branch not in node.branch_keys:
                    errors.append(
                        f"Branch edge '{edge.label}' uses key {edge.branch!r}; '{name}' "
                        f"only selects {sorted(map(repr, node.branch_keys))}"
                    )

        errors.extend(self._validate_fan_out_siblings())

        if self.start in self.nodes:
            reachable = self._reachable()
            for name in self.nodes:
                if name not in reachable:
                    errors.append(f"Node '{name}' is unreachable from start '{self.start}'")

        cycle = self._unconditional_cycle()
        if cycle:
            errors.append(
                f"Cycle {' -> '.join(cycle)} has only unconditional edges and could never exit"
            )

        if self._declared_output is not None:
            if self._declared_output not in self.nodes:
                errors.append(f"Output node '{self._declared_output}' not found")
        else:
            sinks = self._sink_nodes()
            if not sinks:
                errors.append("No node without outgoing edges; declare output_node")
            elif len(sinks) > 1:
                errors.append(f"Ambiguous output node {sinks}; declare output_node")

        return errors

    def _validate_fan_out_siblings(self) -> list[str]:
        """Concurrent siblings must not depend on each other."""
        errors: list[str] = []
        groups: list[tuple[str, list[Node]]] = []

        for source, targets in self.detect_fan_out_nodes().items():
            siblings = [self.nodes[t] for t in targets if t in self.nodes]
            groups.append((f"fan-out from '{source}'", siblings))
        for node in self.node_list:
            inner = _unwrap(node)
            if isinstance(inner, ParallelGroupNode):
                groups.append((f"parallel group '{inner.name}'", inner.children))

        for label, siblings in groups:
            for sibling in siblings:
                others = {
                    name
                    for other in siblings
                    if other is not sibling
                    for name in other.result_names()
                }
                for dep in sibling.dependencies:
                    if dep in others:
                        errors.append(
                            f"In {label}: '{sibling.name}' depends on sibling '{dep}'; "
                            f"concurrent siblings must be independent"
                        )
        return errors

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def _validate_input(self, input: Any) -> Any:
        if self.input_schema is None:
            return input
        if isinstance(self.input_schema, type) and issubclass(self.input_schema, BaseModel):
            return self.input_schema.model_validate(input)
        return self.input_schema(input)

    @staticmethod
    def _input_error_kind(exc: Exception) -> ErrorKind:
        """NodeErrors keep their kind; anything unrecognised is a validation failure."""
        kind = classify_exception(exc)
        return ErrorKind.VALIDATION if kind == ErrorKind.UNKNOWN else kind

    async def run(
        self,
        input: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> WorkflowResult:
        """
        Run the workflow once.

        Never raises for run-time problems: failures are reported in
        ``WorkflowResult.status`` / ``.error`` with partial ``outputs``.
        """
        dispatcher = HookDispatcher(self.hooks)
        ctx = ExecutionContext(self.name, cancel_token=cancel_token, hooks=dispatcher)
        started = time.perf_counter()

        with scoped_trace_context(workflow=self.name, execution_id=ctx.execution_id):
            try:
                ctx.input = self._validate_input(input)
            except Exception as e:
                logger.error(f"✗ Input rejected for workflow '{self.name}': {e}")
                outcome = RunOutcome(
                    RunStatus.FAILED,
                    error=WorkflowError(WORKFLOW_INPUT, self._input_error_kind(e), str(e)),
                )
            else:
                executor = GraphExecutor(
                    workflow_name=self.name,
                    nodes=self.nodes,
                    edges=self.edges,
                    start=self.start,
                    max_iterations=self.max_iterations,
                    checkpoint=self.checkpoint,
                    checkpoint_config=self.checkpoint_config,
                )
                outcome = await executor.execute(ctx)

            # A run ended by finish() before reaching the output node reports the finisher
            output_node = self.output_node
            if outcome.finished_by and not ctx.succeeded(output_node):
                output_node = outcome.finished_by

            result = WorkflowResult(
                status=outcome.status,
                outputs=ctx.snapshot(),
                final_output=ctx.value(output_node, None),
                duration_ms=(time.perf_counter() - started) * 1000,
                execution_id=ctx.execution_id,
                error=outcome.error,
                path=list(ctx.path),
                visit_counts=dict(ctx.visit_counts),
                invocations=outcome.invocations,
            )

            if outcome.success:
                dispatcher.complete(self.name, ctx)
            else:
                dispatcher.error(self.name, ctx, outcome.error)

        return result
