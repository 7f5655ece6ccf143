"""
Node Protocol - the unit of work in a workflow graph.

A node has a unique name and an ``execute(input, ctx)`` coroutine. Nodes are
built once and reused across runs, so they must not keep per-run state on
``self``; everything a run produces lives in the ExecutionContext.

Three entry points, from innermost to outermost:
- ``execute``: user code. May return a plain value or a NodeResult, may raise.
- ``invoke``: exactly one NodeResult per call. Exceptions become Failures,
  ``output_schema`` is enforced and the node name is stamped on the result.
- ``run``: ``invoke`` plus the node's own policies, ``Retry(Timeout(node))``
  when ``retry_policy`` / ``timeout`` are set. The executor calls this.

Node types defined here:
- TransformNode: derive a payload from input/context
- ConditionNode / SwitchNode: select which branch edge to follow
- DelayNode: pass input through after a (cancellable) pause
- ValidationNode: reject input that fails a predicate or pydantic model
- PassthroughNode: log and pass through
"""

import asyncio
import functools
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable, Iterable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from flowgraph.graph.errors import ErrorKind, NodeError, classify_exception
from flowgraph.graph.result import Failure, NodeResult, Success
from flowgraph.observability import scoped_trace_context

if TYPE_CHECKING:
    from flowgraph.graph.context import ExecutionContext
    from flowgraph.graph.resilience import CircuitBreaker, RetryPolicy

logger = logging.getLogger(__name__)


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable and return its (awaited) result."""
    outcome = func(*args)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


def consume_abandoned(task: asyncio.Future) -> None:
    """Done-callback for a task that was cancelled and left behind; retrieves its outcome."""
    if not task.cancelled():
        task.exception()


class Node(ABC):
    """
    Base class for every workflow node.

    Example:
        class Fetch(Node):
            async def execute(self, input, ctx):
                return {"n": 5}

        fetch = Fetch("fetch", timeout=10, retry_policy=RetryPolicy(max_retries=2))
    """

    def __init__(
        self,
        name: str,
        *,
        dependencies: Iterable[str] = (),
        description: str = "",
        timeout: float | None = None,
        retry_policy: "RetryPolicy | None" = None,
        output_schema: type[BaseModel] | None = None,
        fan_out: bool = False,
    ):
        if not name:
            raise ValueError("Node name must be a non-empty string")
        self.name = name
        self.dependencies: tuple[str, ...] = tuple(dependencies)
        self.description = description
        self.timeout = timeout
        self.retry_policy = retry_policy
        self.output_schema = output_schema
        self.fan_out = fan_out

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    @abstractmethod
    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        """Do the node's work. Return a value (wrapped in Success) or a NodeResult."""

    @property
    def branch_keys(self) -> frozenset[Hashable]:
        """Keys this node may select for BRANCH edges (empty for non-branching nodes)."""
        return frozenset()

    @property
    def branching(self) -> bool:
        return bool(self.branch_keys)

    def result_names(self) -> list[str]:
        """Every name this node records results under (composites add their children)."""
        return [self.name]

    async def invoke(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        with scoped_trace_context(node_id=self.name):
            try:
                outcome = await self.execute(input, ctx)
            except asyncio.CancelledError:
                raise
            except NodeError as e:
                return Failure(e.kind, str(e), retriable=e.retriable, node=self.name)
            except Exception as e:
                kind = classify_exception(e)
                logger.debug(f"Node '{self.name}' raised {type(e).__name__}", exc_info=True)
                return Failure(kind, f"{type(e).__name__}: {e}", node=self.name)

            result = outcome if isinstance(outcome, Success | Failure) else Success(outcome)
            if isinstance(result, Success) and self.output_schema is not None:
                result = self._check_output(result)
            return result.with_node(self.name)

    def _check_output(self, result: Success) -> NodeResult:
        schema = self.output_schema
        if isinstance(result.value, schema):
            return result
        try:
            validated = schema.model_validate(result.value)
        except ValidationError as e:
            return Failure(
                ErrorKind.VALIDATION,
                f"Output of '{self.name}' does not match {schema.__name__}: {e}",
                retriable=False,
            )
        return Success(validated, finish=result.finish, children=result.children)

    async def run(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        """Invoke with this node's own timeout/retry policy applied."""
        if self.timeout is None and self.retry_policy is None:
            return await self.invoke(input, ctx)

        from flowgraph.graph.resilience import call_with_retry, call_with_timeout

        call = self.invoke
        if self.timeout is not None:
            call = functools.partial(
                call_with_timeout, self.name, self.invoke, seconds=self.timeout
            )
        if self.retry_policy is not None:
            return await call_with_retry(self.name, call, input, ctx, self.retry_policy)
        return await call(input, ctx)

    # ------------------------------------------------------------------
    # Fluent composition. Each call wraps the current node, so the first
    # call is innermost: node.with_timeout(2).with_retry(3) is
    # Retry(Timeout(node)).
    # ------------------------------------------------------------------

    def with_timeout(
        self, seconds: float, on_timeout: Callable[..., Any] | None = None
    ) -> "Node":
        from flowgraph.graph.resilience import TimeoutNode

        return TimeoutNode(self, seconds, on_timeout=on_timeout)

    def with_retry(self, max_retries: "int | RetryPolicy" = 3, **policy: Any) -> "Node":
        from flowgraph.graph.resilience import RetryNode, RetryPolicy

        if isinstance(max_retries, RetryPolicy):
            return RetryNode(self, max_retries)
        return RetryNode(self, RetryPolicy(max_retries=max_retries, **policy))

    def with_fallback(self, secondary: "Node") -> "Node":
        from flowgraph.graph.resilience import FallbackNode

        return FallbackNode(self, secondary)

    def with_circuit_breaker(self, breaker: "CircuitBreaker") -> "Node":
        from flowgraph.graph.resilience import CircuitBreakerNode

        return CircuitBreakerNode(self, breaker)


class NodeWrapper(Node):
    """
    A node that decorates exactly one inner node.

    The wrapper takes over the inner node's identity (name, dependencies,
    fan-out flag, branch keys) so the graph cannot tell them apart; only the
    failure handling differs. Subclasses implement ``invoke``.
    """

    def __init__(self, inner: Node):
        super().__init__(
            inner.name,
            dependencies=inner.dependencies,
            description=inner.description,
            fan_out=inner.fan_out,
        )
        self.inner = inner

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.inner!r})"

    @property
    def branch_keys(self) -> frozenset[Hashable]:
        return self.inner.branch_keys

    def result_names(self) -> list[str]:
        return self.inner.result_names()

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        return await self.invoke(input, ctx)

    @abstractmethod
    async def invoke(self, input: Any, ctx: "ExecutionContext") -> NodeResult: ...


class TransformNode(Node):
    """Derive a payload with ``func(input, ctx)`` (sync or async)."""

    def __init__(self, name: str, func: Callable[..., Any], **kwargs: Any):
        super().__init__(name, **kwargs)
        self.func = func

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        return await call_maybe_async(self.func, input, ctx)


class ConditionNode(Node):
    """
    Select one of two branches with a boolean predicate.

    The recorded output is the selected branch key; BRANCH edges leaving this
    node match on it.

    Example:
        ConditionNode("is_large", lambda input, ctx: input["n"] > 10,
                      true_branch="large", false_branch="small")
    """

    def __init__(
        self,
        name: str,
        predicate: Callable[..., Any],
        true_branch: Hashable = "true",
        false_branch: Hashable = "false",
        **kwargs: Any,
    ):
        super().__init__(name, **kwargs)
        if true_branch == false_branch:
            raise ValueError(f"ConditionNode '{name}' needs two distinct branch keys")
        self.predicate = predicate
        self.true_branch = true_branch
        self.false_branch = false_branch

    @property
    def branch_keys(self) -> frozenset[Hashable]:
        return frozenset({self.true_branch, self.false_branch})

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        matched = await call_maybe_async(self.predicate, input, ctx)
        return self.true_branch if matched else self.false_branch


class SwitchNode(Node):
    """
    Select a branch by key.

    ``selector(input, ctx)`` returns a key; an undeclared key (or None) maps
    to ``default``, so the switch always selects something.
    """

    def __init__(
        self,
        name: str,
        selector: Callable[..., Any],
        cases: Iterable[Hashable],
        default: Hashable = "default",
        **kwargs: Any,
    ):
        super().__init__(name, **kwargs)
        self.selector = selector
        self.cases = tuple(cases)
        self.default = default
        if default in self.cases:
            raise ValueError(f"SwitchNode '{name}': default key {default!r} is also a case")

    @property
    def branch_keys(self) -> frozenset[Hashable]:
        return frozenset(self.cases) | {self.default}

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        key = await call_maybe_async(self.selector, input, ctx)
        try:
            if key in self.cases:
                return key
        except TypeError:
            # Unhashable selector output can't match a case
            pass
        return self.default


class DelayNode(Node):
    """Pass input through after ``seconds``. Cancelling the run interrupts the wait."""

    def __init__(self, name: str, seconds: float, **kwargs: Any):
        super().__init__(name, **kwargs)
        if seconds < 0:
            raise ValueError(f"DelayNode '{name}': seconds must be >= 0")
        self.seconds = seconds

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        try:
            await asyncio.wait_for(ctx.cancel_token.wait(), timeout=self.seconds)
        except TimeoutError:
            return input
        ctx.cancel_token.raise_if_cancelled()
        return input


class ValidationNode(Node):
    """
    Reject input that fails a check.

    ``check`` is either a predicate ``(input, ctx) -> bool`` (output ``True``)
    or a pydantic model class (output is the validated model). Rejections are
    always non-retriable validation failures.
    """

    def __init__(
        self,
        name: str,
        check: Callable[..., Any] | type[BaseModel],
        **kwargs: Any,
    ):
        super().__init__(name, **kwargs)
        self.check = check

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        if isinstance(self.check, type) and issubclass(self.check, BaseModel):
            try:
                return self.check.model_validate(input)
            except ValidationError as e:
                return self._reject(f"input does not match {self.check.__name__}: {e}")

        try:
            accepted = await call_maybe_async(self.check, input, ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._reject(f"{type(e).__name__}: {e}")
        if not accepted:
            return self._reject("check returned false")
        return True

    def _reject(self, reason: str) -> Failure:
        logger.info(f"   ✗ Validation '{self.name}' rejected input: {reason}")
        return Failure(
            ErrorKind.VALIDATION,
            f"Validation '{self.name}' failed: {reason}",
            retriable=False,
        )


class PassthroughNode(Node):
    """Log a message (or the input) and pass the input through unchanged."""

    def __init__(
        self,
        name: str,
        message: str | None = None,
        level: int = logging.INFO,
        **kwargs: Any,
    ):
        super().__init__(name, **kwargs)
        self.message = message
        self.level = level

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        text = self.message if self.message is not None else f"{self.name}: {input!r}"
        logger.log(self.level, text)
        return input
