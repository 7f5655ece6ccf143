"""Graph structures: Nodes, Edges, resilience wrappers and the Workflow executor."""

from flowgraph.graph.checkpoint_config import (
    ASYNC_CHECKPOINT_CONFIG,
    DEFAULT_CHECKPOINT_CONFIG,
    DISABLED_CHECKPOINT_CONFIG,
    CheckpointConfig,
)
from flowgraph.graph.composite import ElementFailurePolicy, MapReduceNode, ParallelGroupNode
from flowgraph.graph.context import CancellationToken, ExecutionContext, LoopState
from flowgraph.graph.edge import EdgeCondition, EdgeSpec
from flowgraph.graph.errors import (
    ErrorCategory,
    ErrorKind,
    NodeError,
    WorkflowDefinitionError,
    classify_exception,
)
from flowgraph.graph.executor import GraphExecutor, RunOutcome, RunStatus, WorkflowError
from flowgraph.graph.hooks import HookDispatcher, LifecycleHooks
from flowgraph.graph.llm_node import LLMNode, ToolNode, validate_arguments
from flowgraph.graph.node import (
    ConditionNode,
    DelayNode,
    Node,
    NodeWrapper,
    PassthroughNode,
    SwitchNode,
    TransformNode,
    ValidationNode,
)
from flowgraph.graph.resilience import (
    CircuitBreaker,
    CircuitBreakerNode,
    CircuitBreakerRegistry,
    CircuitState,
    FallbackNode,
    RetryNode,
    RetryPolicy,
    TimeoutNode,
)
from flowgraph.graph.result import Failure, NodeResult, Success, finish
from flowgraph.graph.workflow import Workflow, WorkflowResult

__all__ = [
    # Results & errors
    "Success",
    "Failure",
    "NodeResult",
    "finish",
    "ErrorKind",
    "ErrorCategory",
    "NodeError",
    "WorkflowDefinitionError",
    "classify_exception",
    # Context
    "ExecutionContext",
    "CancellationToken",
    "LoopState",
    "LifecycleHooks",
    "HookDispatcher",
    # Nodes
    "Node",
    "NodeWrapper",
    "TransformNode",
    "ConditionNode",
    "SwitchNode",
    "DelayNode",
    "ValidationNode",
    "PassthroughNode",
    "ParallelGroupNode",
    "MapReduceNode",
    "ElementFailurePolicy",
    "LLMNode",
    "ToolNode",
    "validate_arguments",
    # Resilience
    "RetryPolicy",
    "RetryNode",
    "TimeoutNode",
    "FallbackNode",
    "CircuitBreaker",
    "CircuitState",
    "CircuitBreakerRegistry",
    "CircuitBreakerNode",
    # Edges
    "EdgeSpec",
    "EdgeCondition",
    # Execution
    "Workflow",
    "WorkflowResult",
    "GraphExecutor",
    "RunOutcome",
    "RunStatus",
    "WorkflowError",
    # Checkpoints
    "CheckpointConfig",
    "DEFAULT_CHECKPOINT_CONFIG",
    "ASYNC_CHECKPOINT_CONFIG",
    "DISABLED_CHECKPOINT_CONFIG",
]
