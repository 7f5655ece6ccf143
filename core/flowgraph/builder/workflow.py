"""
WorkflowBuilder - fluent, step-by-step construction of a Workflow.

Steps are added in order; ``after`` wires edges from earlier steps, ``when``
makes those edges conditional and ``on_error`` routes failures. Nothing is
checked until ``build()``, which hands everything to Workflow and lets its
validation report every problem at once.

Usage:
    workflow = (
        WorkflowBuilder("report")
        .step(fetch)
        .step(transform, after="fetch")
        .step(report, after="transform", on_error="apologize")
        .step(apologize)
        .output("report")
        .build()
    )

Conventions the builder applies for you:
- The first step is the start node unless ``start()`` names another.
- A step with several ``after`` sources is a join: those sources become its
  dependencies, so it runs once with ``{source: payload}`` as input.
- A source that ends up with several unconditional edges is marked
  ``fan_out`` so its targets run concurrently.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel

from flowgraph.graph.checkpoint_config import CheckpointConfig
from flowgraph.graph.context import ExecutionContext
from flowgraph.graph.edge import EdgeCondition, EdgeSpec
from flowgraph.graph.executor import CheckpointHook
from flowgraph.graph.hooks import LifecycleHooks
from flowgraph.graph.node import Node, NodeWrapper
from flowgraph.graph.result import NodeResult
from flowgraph.graph.workflow import Workflow

logger = logging.getLogger(__name__)

Predicate = Callable[[ExecutionContext], bool]


class _WiredStep(NodeWrapper):
    """
    A step carrying the join dependencies and fan-out flag the builder derived.

    The caller's node is left untouched, so it can be reused in other workflows.
    """

    def __init__(self, inner: Node, dependencies: tuple[str, ...], fan_out: bool):
        super().__init__(inner)
        self.dependencies = dependencies
        self.fan_out = fan_out

    async def invoke(self, input: Any, ctx: ExecutionContext) -> NodeResult:
        return await self.inner.run(input, ctx)


def _as_names(after: str | Sequence[str] | None) -> list[str]:
    if after is None:
        return []
    if isinstance(after, str):
        return [after]
    return list(after)


class WorkflowBuilder:
    """Fluent builder; every method but ``build()`` returns the builder."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._nodes: list[Node] = []
        self._edges: list[EdgeSpec] = []
        self._joins: dict[str, list[str]] = {}
        self._start: str | None = None
        self._output: str | None = None
        self._hooks: LifecycleHooks | None = None
        self._max_iterations: int | None = None
        self._input_schema: type[BaseModel] | Callable[[Any], Any] | None = None
        self._checkpoint: CheckpointHook | None = None
        self._checkpoint_config: CheckpointConfig | None = None

    # =========================================================================
    # Nodes and edges
    # =========================================================================

    def step(
        self,
        node: Node,
        *,
        after: str | Sequence[str] | None = None,
        when: Predicate | None = None,
        on_error: str | None = None,
    ) -> "WorkflowBuilder":
        """
        Add a node, wired after earlier steps.

        Args:
            node: The node to add
            after: Step name(s) whose success activates this node
            when: Context predicate; makes every ``after`` edge conditional
            on_error: Step that receives this node's failure
        """
        self._nodes.append(node)

        sources = _as_names(after)
        for source in sources:
            self.edge(source, node.name, when=when)
        if len(sources) > 1:
            self._joins[node.name] = sources
        if on_error is not None:
            self.on_failure(node.name, on_error)
        return self

    def edge(
        self,
        source: str,
        target: str,
        *,
        when: Predicate | None = None,
        description: str = "",
    ) -> "WorkflowBuilder":
        """Add an on-success edge, conditional when ``when`` is given."""
        if when is None:
            spec = EdgeSpec(source=source, target=target, description=description)
        else:
            spec = EdgeSpec(
                source=source,
                target=target,
                condition=EdgeCondition.CONDITIONAL,
                predicate=when,
                description=description,
            )
        self._edges.append(spec)
        return self

    def branch(self, source: str, key: Any, target: str) -> "WorkflowBuilder":
        """Follow ``source -> target`` when the condition/switch node selects ``key``."""
        self._edges.append(
            EdgeSpec(source=source, target=target, condition=EdgeCondition.BRANCH, branch=key)
        )
        return self

    def on_failure(self, source: str, target: str) -> "WorkflowBuilder":
        """Route a failure of ``source`` to ``target`` (which receives the Failure)."""
        self._edges.append(
            EdgeSpec(source=source, target=target, condition=EdgeCondition.ON_FAILURE)
        )
        return self

    # =========================================================================
    # Settings
    # =========================================================================

    def start(self, name: str) -> "WorkflowBuilder":
        self._start = name
        return self

    def output(self, name: str) -> "WorkflowBuilder":
        self._output = name
        return self

    def hooks(self, hooks: LifecycleHooks | None = None, **callbacks: Any) -> "WorkflowBuilder":
        """Set lifecycle hooks, as a LifecycleHooks or as ``on_*`` keyword callbacks."""
        self._hooks = hooks if hooks is not None else LifecycleHooks(**callbacks)
        return self

    def max_iterations(self, limit: int) -> "WorkflowBuilder":
        self._max_iterations = limit
        return self

    def input_schema(self, schema: type[BaseModel] | Callable[[Any], Any]) -> "WorkflowBuilder":
        self._input_schema = schema
        return self

    def checkpoint(
        self, hook: CheckpointHook, config: CheckpointConfig | None = None
    ) -> "WorkflowBuilder":
        self._checkpoint = hook
        self._checkpoint_config = config
        return self

    # =========================================================================
    # Build
    # =========================================================================

    def _fan_out_sources(self) -> set[str]:
        targets: dict[str, set[str]] = {}
        for edge in self._edges:
            if edge.unconditional:
                targets.setdefault(edge.source, set()).add(edge.target)
        return {source for source, names in targets.items() if len(names) > 1}

    def _wired_nodes(self) -> list[Node]:
        """The steps, with builder-derived joins and fan-outs applied to wrappers."""
        fan_outs = self._fan_out_sources()
        nodes: list[Node] = []
        for node in self._nodes:
            join = self._joins.get(node.name, [])
            fan_out = node.fan_out or node.name in fan_outs
            if not join and fan_out == node.fan_out:
                nodes.append(node)
                continue
            if fan_out and not node.fan_out:
                logger.debug(f"Marking '{node.name}' as fan-out")
            dependencies = tuple(dict.fromkeys([*node.dependencies, *join]))
            nodes.append(_WiredStep(node, dependencies, fan_out))
        return nodes

    def build(self) -> Workflow:
        """
        Create the Workflow.

        Raises:
            ValueError: No steps were added
            WorkflowDefinitionError: The assembled graph is invalid
        """
        if not self._nodes:
            raise ValueError(f"Workflow '{self.name}' has no steps")

        workflow = Workflow(
            name=self.name,
            nodes=self._wired_nodes(),
            edges=self._edges,
            start=self._start or self._nodes[0].name,
            input_schema=self._input_schema,
            output_node=self._output,
            hooks=self._hooks,
            max_iterations=self._max_iterations,
            checkpoint=self._checkpoint,
            checkpoint_config=self._checkpoint_config,
            description=self.description,
        )
        logger.info(
            f"Built workflow '{self.name}': {len(self._nodes)} nodes, {len(self._edges)} edges"
        )
        return workflow
