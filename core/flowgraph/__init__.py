"""
flowgraph - async workflow orchestration.

Build a graph of nodes and edges, wrap nodes with retry/timeout/fallback and
circuit breakers, and run it with frontier scheduling, bounded loops and
join barriers.

LLM providers live in ``flowgraph.llm`` (importing it pulls in litellm).
"""

from flowgraph.builder.workflow import WorkflowBuilder
from flowgraph.graph import (
    CancellationToken,
    CircuitBreaker,
    ConditionNode,
    DelayNode,
    EdgeCondition,
    EdgeSpec,
    ErrorKind,
    ExecutionContext,
    Failure,
    FallbackNode,
    LifecycleHooks,
    LLMNode,
    MapReduceNode,
    Node,
    NodeError,
    ParallelGroupNode,
    PassthroughNode,
    RetryPolicy,
    RunStatus,
    Success,
    SwitchNode,
    ToolNode,
    TransformNode,
    ValidationNode,
    Workflow,
    WorkflowDefinitionError,
    WorkflowResult,
    finish,
)
from flowgraph.runner.agent import WorkflowAgent

__version__ = "0.1.0"

__all__ = [
    "Workflow",
    "WorkflowBuilder",
    "WorkflowResult",
    "WorkflowAgent",
    "WorkflowDefinitionError",
    "RunStatus",
    "ExecutionContext",
    "CancellationToken",
    "LifecycleHooks",
    "Node",
    "TransformNode",
    "ConditionNode",
    "SwitchNode",
    "DelayNode",
    "ValidationNode",
    "PassthroughNode",
    "ParallelGroupNode",
    "MapReduceNode",
    "LLMNode",
    "ToolNode",
    "RetryPolicy",
    "FallbackNode",
    "CircuitBreaker",
    "EdgeSpec",
    "EdgeCondition",
    "Success",
    "Failure",
    "finish",
    "ErrorKind",
    "NodeError",
]
