"""
Execution Context - the per-run store of node outputs and run metadata.

One context exists per workflow run and is owned by that run's executor.
Nodes only read from it; the executor is the single writer and merges a
whole frontier's results after the join barrier, so no node ever observes
a half-written context.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from flowgraph.graph.errors import ErrorKind, NodeError
from flowgraph.graph.hooks import HookDispatcher
from flowgraph.graph.result import Failure, NodeResult, Success

T = TypeVar("T")

_MISSING = object()


@dataclass
class LoopState:
    """Invocation count of a node that has been revisited in this run."""

    iteration: int = 0


class CancellationToken:
    """
    Run-scoped cooperative cancellation signal.

    Threaded through every node invocation via ``ctx.cancel_token``.
    Long-running nodes can ``await token.wait()`` or call
    ``token.raise_if_cancelled()`` between units of work.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise NodeError(self.reason or "cancelled", kind=ErrorKind.CANCELLED)


class ExecutionContext:
    """
    Mutable-by-append record of one workflow run.

    Example (inside a node):
        fetched = ctx.value("fetch")
        report = ctx.output("analyze", AnalysisReport)  # typed, validated
        if ctx.iteration("refine") > 3: ...
    """

    def __init__(
        self,
        workflow_name: str,
        input: Any = None,
        execution_id: str | None = None,
        cancel_token: CancellationToken | None = None,
        hooks: HookDispatcher | None = None,
    ):
        self.workflow_name = workflow_name
        self.input = input
        self.execution_id = execution_id or uuid.uuid4().hex
        self.start_time = datetime.now(UTC)
        self.cancel_token = cancel_token or CancellationToken()
        self.hooks = hooks or HookDispatcher()

        self.outputs: dict[str, NodeResult] = {}
        self.loop_state: dict[str, LoopState] = {}
        self.visit_counts: dict[str, int] = {}
        self.path: list[str] = []
        self.metadata: dict[str, Any] = {}
        self._history: dict[str, list[NodeResult]] = {}
        # Sequence numbers ordering records against invocations (for loop joins)
        self._seq = 0
        self._recorded_at: dict[str, int] = {}
        self._visited_at: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, name: str) -> NodeResult | None:
        """Latest result recorded for a node, or None."""
        return self.outputs.get(name)

    def has(self, name: str) -> bool:
        """True if the node has a recorded result (success or failure)."""
        return name in self.outputs

    def succeeded(self, name: str) -> bool:
        result = self.outputs.get(name)
        return result is not None and result.ok

    def value(self, name: str, default: Any = _MISSING) -> Any:
        """
        Success payload of a node.

        Raises:
            NodeError(NOT_FOUND): node has not produced a result and no default given
            NodeError(DEPENDENCY_UNSATISFIED): node's latest result is a failure
        """
        result = self.outputs.get(name)
        if result is None:
            if default is not _MISSING:
                return default
            raise NodeError(f"No output recorded for node '{name}'", kind=ErrorKind.NOT_FOUND)
        if isinstance(result, Failure):
            if default is not _MISSING:
                return default
            raise NodeError(
                f"Node '{name}' failed: {result.message}",
                kind=ErrorKind.DEPENDENCY_UNSATISFIED,
            )
        return result.value

    def output(self, name: str, expected_type: type[T]) -> T:
        """
        Typed accessor for a node's payload.

        Pydantic models are validated from dicts on access; other types are
        checked with isinstance. A mismatch raises NodeError(VALIDATION).
        """
        value = self.value(name)
        if isinstance(value, expected_type):
            return value
        if isinstance(expected_type, type) and issubclass(expected_type, BaseModel):
            try:
                return expected_type.model_validate(value)
            except ValidationError as e:
                raise NodeError(
                    f"Output of '{name}' does not match {expected_type.__name__}: {e}",
                    kind=ErrorKind.VALIDATION,
                ) from e
        raise NodeError(
            f"Output of '{name}' is {type(value).__name__}, expected {expected_type.__name__}",
            kind=ErrorKind.VALIDATION,
        )

    def history(self, name: str) -> list[NodeResult]:
        """Every result the node produced this run, oldest first."""
        return list(self._history.get(name, []))

    def recorded_since_visit(self, dependency: str, node: str) -> bool:
        """True if ``dependency`` produced a result after ``node`` was last invoked."""
        return self._recorded_at.get(dependency, 0) > self._visited_at.get(node, 0)

    def iteration(self, name: str) -> int:
        """How many times the node has been invoked this run."""
        return self.visit_counts.get(name, 0)

    def values(self) -> dict[str, Any]:
        """Payloads of all successful nodes, keyed by name."""
        return {name: r.value for name, r in self.outputs.items() if isinstance(r, Success)}

    def snapshot(self) -> dict[str, NodeResult]:
        return dict(self.outputs)

    @property
    def elapsed_ms(self) -> float:
        return (datetime.now(UTC) - self.start_time).total_seconds() * 1000

    # ------------------------------------------------------------------
    # Writes (executor only)
    # ------------------------------------------------------------------

    def mark_visit(self, name: str) -> int:
        count = self.visit_counts.get(name, 0) + 1
        self.visit_counts[name] = count
        self.path.append(name)
        self._visited_at[name] = self._seq
        if count > 1:
            self.loop_state.setdefault(name, LoopState()).iteration = count
        return count

    def record(self, name: str, result: NodeResult) -> None:
        """Store a result; last write wins in ``outputs``, all writes kept in history."""
        self.outputs[name] = result
        self._history.setdefault(name, []).append(result)
        self._seq += 1
        self._recorded_at[name] = self._seq
        for child_name, child_result in result.children.items():
            self.record(child_name, child_result)
