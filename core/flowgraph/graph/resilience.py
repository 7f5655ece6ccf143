"""
Resilience Wrappers - nodes that change how another node fails.

Each wrapper decorates exactly one node and keeps its name and contract.
Wrappers compose; the innermost one runs closest to the raw node:

    fetch.with_timeout(5).with_retry(3).with_circuit_breaker(breaker)
    # CircuitBreaker(Retry(Timeout(fetch)))

Circuit breakers hold the only state that outlives a run. A breaker is an
explicit object injected into CircuitBreakerNode; share one between
workflows through a CircuitBreakerRegistry.

States::

    CLOSED ──(N failures)──► OPEN ──(cooldown)──► HALF_OPEN
       ▲                                              │
       └──────────(trial success)─────────────────────┘
                  (trial fail) ──► OPEN
"""

import asyncio
import logging
import random
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from flowgraph.graph.errors import ErrorKind, classify_exception
from flowgraph.graph.node import Node, NodeWrapper, call_maybe_async, consume_abandoned
from flowgraph.graph.result import Failure, NodeResult, Success

if TYPE_CHECKING:
    from flowgraph.graph.context import ExecutionContext

logger = logging.getLogger(__name__)

NodeCall = Callable[[Any, "ExecutionContext"], Awaitable[NodeResult]]

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 60.0


# ----------------------------------------------------------------------
# Retry
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to re-invoke a failing node.

    Delay before retry ``k`` (0-based) is ``base_delay * 2**k`` when
    ``exponential``, else ``base_delay``; capped by ``max_delay``; with
    ``jitter`` it is scaled by a random factor in [0.5, 1.5].

    ``retry_on(failure, attempt)`` decides whether a failure is retried;
    ``attempt`` is the 1-based number of the attempt that just failed. The
    default retries exactly the failures marked retriable.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    exponential: bool = True
    jitter: bool = False
    max_delay: float | None = None
    retry_on: Callable[[Failure, int], bool] | None = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    def should_retry(self, failure: Failure, attempt: int) -> bool:
        if self.retry_on is None:
            return bool(failure.retriable)
        return bool(self.retry_on(failure, attempt))

    def delay_for(self, retry_index: int) -> float:
        delay = self.base_delay * (2**retry_index) if self.exponential else self.base_delay
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return delay


async def call_with_retry(
    name: str,
    call: NodeCall,
    input: Any,
    ctx: "ExecutionContext",
    policy: RetryPolicy,
) -> NodeResult:
    """Invoke ``call`` up to ``1 + policy.max_retries`` times; return the last result."""
    retries = 0
    while True:
        result = await call(input, ctx)
        if result.ok:
            if retries:
                plural = "y" if retries == 1 else "ies"
                logger.info(f"   ✓ {name} succeeded after {retries} retr{plural}")
            return result
        if retries >= policy.max_retries:
            if policy.max_retries:
                logger.warning(f"   ✗ Max retries ({policy.max_retries}) exceeded for {name}")
            return result
        if ctx.cancel_token.cancelled or not policy.should_retry(result, retries + 1):
            return result

        delay = policy.delay_for(retries)
        retries += 1
        logger.info(
            f"   ↻ Retrying {name} ({retries}/{policy.max_retries}) in {delay:.2f}s: "
            f"{result.message}",
            extra={"event": "node_retry", "attempt": retries},
        )
        await asyncio.sleep(delay)


class RetryNode(NodeWrapper):
    """Re-invoke the wrapped node on retriable failures."""

    def __init__(self, node: Node, policy: RetryPolicy | None = None):
        super().__init__(node)
        self.policy = policy or RetryPolicy()

    async def invoke(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        return await call_with_retry(self.name, self.inner.run, input, ctx, self.policy)


# ----------------------------------------------------------------------
# Timeout
# ----------------------------------------------------------------------


async def call_with_timeout(
    name: str,
    call: NodeCall,
    input: Any,
    ctx: "ExecutionContext",
    seconds: float,
    on_timeout: Callable[..., Any] | None = None,
) -> NodeResult:
    """
    Race ``call`` against a timer.

    On expiry the in-flight task is cancelled and abandoned: it is never
    awaited, and whatever it eventually produces is discarded.
    """
    task = asyncio.ensure_future(call(input, ctx))
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.cancel()
    task.add_done_callback(consume_abandoned)
    logger.warning(f"   ⏱ {name} timed out after {seconds}s", extra={"event": "node_timeout"})

    if on_timeout is None:
        return Failure(ErrorKind.TIMEOUT, f"Node '{name}' timed out after {seconds}s", node=name)
    try:
        payload = await call_maybe_async(on_timeout, input, ctx)
    except Exception as e:
        return Failure(classify_exception(e), f"on_timeout for '{name}' failed: {e}", node=name)
    return Success(payload, node=name)


class TimeoutNode(NodeWrapper):
    """Fail (or substitute ``on_timeout(input, ctx)``) when the node runs too long."""

    def __init__(
        self,
        node: Node,
        seconds: float,
        on_timeout: Callable[..., Any] | None = None,
    ):
        super().__init__(node)
        if seconds <= 0:
            raise ValueError(f"Timeout for '{node.name}' must be positive")
        self.seconds = seconds
        self.on_timeout = on_timeout

    async def invoke(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        return await call_with_timeout(
            self.name, self.inner.run, input, ctx, self.seconds, self.on_timeout
        )


# ----------------------------------------------------------------------
# Fallback
# ----------------------------------------------------------------------


class FallbackNode(NodeWrapper):
    """
    Run ``secondary`` when ``primary`` fails.

    The primary's failure is reported through the ``on_node_error`` hook but
    never becomes the node's result.
    """

    def __init__(self, primary: Node, secondary: Node):
        super().__init__(primary)
        self.secondary = secondary

    @property
    def primary(self) -> Node:
        return self.inner

    def result_names(self) -> list[str]:
        nested = [n for n in self.secondary.result_names() if n != self.secondary.name]
        return self.inner.result_names() + nested

    async def invoke(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        result = await self.inner.run(input, ctx)
        if result.ok:
            return result

        logger.warning(
            f"   ↪ {self.name} failed ({result.kind}), falling back to {self.secondary.name}"
        )
        ctx.hooks.node_error(self.name, ctx, result)
        fallback = await self.secondary.run(input, ctx)
        return fallback.with_node(self.name)


# ----------------------------------------------------------------------
# Circuit breaker
# ----------------------------------------------------------------------


class CircuitState(StrEnum):
    """States for the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker, safe to share across runs and threads.

    Args:
        name: Resource name (for logging and registry lookup)
        failure_threshold: Consecutive failures before opening the circuit
        cooldown_seconds: Seconds to stay OPEN before admitting a trial call
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state, with the automatic OPEN → HALF_OPEN transition applied."""
        with self._lock:
            return self._current_state()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def _current_state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - self._opened_at
            if elapsed >= self.cooldown_seconds:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info(
                    "[%s] Circuit breaker: OPEN → HALF_OPEN (cooldown %.1fs elapsed)",
                    self.name,
                    elapsed,
                )
        return self._state

    def try_acquire(self) -> bool:
        """Admit a call? HALF_OPEN admits exactly one trial until it resolves."""
        with self._lock:
            state = self._current_state()
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def release(self) -> None:
        """Give back an admitted trial slot without recording an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def record_success(self) -> None:
        with self._lock:
            prev = self._state
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._trial_in_flight = False
        if prev != CircuitState.CLOSED:
            logger.info("[%s] Circuit breaker: %s → CLOSED (success)", self.name, prev.value)

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            prev = self._state
            trial_failed = prev == CircuitState.HALF_OPEN
            if trial_failed or self._consecutive_failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
            self._trial_in_flight = False
            failures = self._consecutive_failures
        if prev != CircuitState.OPEN and self._state == CircuitState.OPEN:
            logger.warning(
                "[%s] Circuit breaker: %s → OPEN (%d consecutive failures)",
                self.name,
                prev.value,
                failures,
            )

    def reset(self) -> None:
        """Force-reset to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._trial_in_flight = False
        logger.info("[%s] Circuit breaker force-reset to CLOSED", self.name)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "cooldown_seconds": self.cooldown_seconds,
        }


class CircuitBreakerRegistry:
    """
    Named breakers shared by every workflow holding this registry.

    Example:
        breakers = CircuitBreakerRegistry()
        search = search_node.with_circuit_breaker(breakers.get_or_create("search-api"))
    """

    def __init__(self):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> CircuitBreaker:
        """Return the breaker called ``name``; settings only apply on first creation."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, failure_threshold, cooldown_seconds, clock)
                self._breakers[name] = breaker
            return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.to_dict() for b in breakers}

    def __len__(self) -> int:
        return len(self._breakers)


class CircuitBreakerNode(NodeWrapper):
    """Reject calls with CIRCUIT_OPEN while ``breaker`` is open."""

    def __init__(self, node: Node, breaker: CircuitBreaker):
        super().__init__(node)
        self.breaker = breaker

    async def invoke(self, input: Any, ctx: "ExecutionContext") -> NodeResult:
        if not self.breaker.try_acquire():
            logger.info(f"   ⊘ {self.name}: circuit '{self.breaker.name}' is open, skipping")
            return Failure(
                ErrorKind.CIRCUIT_OPEN,
                f"Circuit '{self.breaker.name}' is open",
                node=self.name,
            )

        try:
            result = await self.inner.run(input, ctx)
        except asyncio.CancelledError:
            self.breaker.release()
            raise

        if result.ok:
            self.breaker.record_success()
        elif result.kind == ErrorKind.CANCELLED:
            self.breaker.release()
        else:
            self.breaker.record_failure()
        return result
