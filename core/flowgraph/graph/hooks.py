"""
Lifecycle hooks - fire-and-forget observability callbacks.

Hooks are invoked at every node and run state transition. They must never
be able to abort a run: whatever a hook raises is logged and dropped.
Async hooks are scheduled as background tasks rather than awaited.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from flowgraph.graph.context import ExecutionContext
    from flowgraph.graph.executor import WorkflowError
    from flowgraph.graph.result import Failure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifecycleHooks:
    """
    Optional callbacks for a workflow run.

    Signatures:
        on_node_start(node_name, ctx)
        on_node_complete(node_name, ctx)
        on_node_error(node_name, ctx, failure)
        on_complete(workflow_name, ctx)
        on_error(workflow_name, ctx, error)
    """

    on_node_start: Callable[..., Any] | None = None
    on_node_complete: Callable[..., Any] | None = None
    on_node_error: Callable[..., Any] | None = None
    on_complete: Callable[..., Any] | None = None
    on_error: Callable[..., Any] | None = None


class HookDispatcher:
    """Calls LifecycleHooks safely on behalf of one run."""

    def __init__(self, hooks: LifecycleHooks | None = None):
        self.hooks = hooks or LifecycleHooks()
        self._background: set[asyncio.Task] = set()

    def node_start(self, node_name: str, ctx: "ExecutionContext") -> None:
        self._fire("on_node_start", node_name, ctx)

    def node_complete(self, node_name: str, ctx: "ExecutionContext") -> None:
        self._fire("on_node_complete", node_name, ctx)

    def node_error(self, node_name: str, ctx: "ExecutionContext", failure: "Failure") -> None:
        self._fire("on_node_error", node_name, ctx, failure)

    def complete(self, workflow_name: str, ctx: "ExecutionContext") -> None:
        self._fire("on_complete", workflow_name, ctx)

    def error(self, workflow_name: str, ctx: "ExecutionContext", error: "WorkflowError") -> None:
        self._fire("on_error", workflow_name, ctx, error)

    def _fire(self, hook_name: str, *args: Any) -> None:
        hook = getattr(self.hooks, hook_name)
        if hook is None:
            return
        try:
            outcome = hook(*args)
        except Exception as e:
            logger.warning(f"Lifecycle hook {hook_name} raised {type(e).__name__}: {e}")
            return

        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._background.add(task)
            task.add_done_callback(lambda t, name=hook_name: self._reap(name, t))

    def _reap(self, hook_name: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Lifecycle hook {hook_name} raised {type(exc).__name__}: {exc}")
