"""
Edge Protocol - How nodes connect in a workflow graph.

Edges define:
1. Source and target nodes
2. When the edge is eligible for traversal

Edge Types:
- on_success: traverse whenever the source succeeds (unconditional)
- conditional: traverse if the source succeeds and a predicate over the
  execution context holds
- branch: traverse if the source is a condition/switch node that selected
  this edge's branch key
- on_failure: traverse only if the source failed (recovery path)

Success edges and failure edges are mutually exclusive per invocation: a
successful node never follows an on_failure edge and vice versa. Outgoing
edges are evaluated in declaration order.
"""

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, model_validator

from flowgraph.graph.result import NodeResult

if TYPE_CHECKING:
    from flowgraph.graph.context import ExecutionContext

logger = logging.getLogger(__name__)


class EdgeCondition(StrEnum):
    """When an edge should be traversed."""

    ON_SUCCESS = "on_success"  # Always after the source succeeds
    CONDITIONAL = "conditional"  # Source succeeded and predicate(ctx) is true
    BRANCH = "branch"  # Source selected this branch key
    ON_FAILURE = "on_failure"  # Only if source fails


class EdgeSpec(BaseModel):
    """
    Specification for an edge between nodes.

    Examples:
        # Simple success-based routing
        EdgeSpec(source="fetch", target="transform")

        # Predicate over the context (condition inferred)
        EdgeSpec(
            source="draft",
            target="refine",
            predicate=lambda ctx: ctx.value("score") < 0.8,
        )

        # Branch of a ConditionNode/SwitchNode (condition inferred)
        EdgeSpec(source="is_large", target="summarize", branch="true")

        # Recovery path
        EdgeSpec(source="charge", target="refund", condition=EdgeCondition.ON_FAILURE)
    """

    source: str = Field(description="Source node name")
    target: str = Field(description="Target node name")

    condition: EdgeCondition = EdgeCondition.ON_SUCCESS
    predicate: Callable[..., Any] | None = Field(
        default=None,
        description="predicate(ctx) -> bool for CONDITIONAL edges",
    )
    branch: Any = Field(
        default=None,
        description="Branch key for BRANCH edges",
    )

    description: str = ""

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _infer_condition(cls, data: Any) -> Any:
        if isinstance(data, dict) and "condition" not in data:
            if data.get("branch") is not None:
                data = {**data, "condition": EdgeCondition.BRANCH}
            elif data.get("predicate") is not None:
                data = {**data, "condition": EdgeCondition.CONDITIONAL}
        return data

    @model_validator(mode="after")
    def _check_condition(self) -> "EdgeSpec":
        if self.condition == EdgeCondition.CONDITIONAL and self.predicate is None:
            raise ValueError(f"Conditional edge {self.label} needs a predicate")
        if self.condition == EdgeCondition.BRANCH and self.branch is None:
            raise ValueError(f"Branch edge {self.label} needs a branch key")
        if self.condition != EdgeCondition.BRANCH and self.branch is not None:
            raise ValueError(f"Edge {self.label} has a branch key but condition {self.condition}")
        if self.condition != EdgeCondition.CONDITIONAL and self.predicate is not None:
            raise ValueError(f"Edge {self.label} has a predicate but condition {self.condition}")
        return self

    @property
    def label(self) -> str:
        return f"{self.source}->{self.target}"

    @property
    def unconditional(self) -> bool:
        return self.condition == EdgeCondition.ON_SUCCESS

    def should_traverse(self, result: NodeResult, ctx: "ExecutionContext") -> bool:
        """
        Determine if this edge should be traversed.

        Args:
            result: The source node's result for this step
            ctx: Execution context (already holds ``result``)

        Returns:
            True if the edge should be traversed
        """
        if self.condition == EdgeCondition.ON_FAILURE:
            return not result.ok
        if not result.ok:
            return False

        if self.condition == EdgeCondition.ON_SUCCESS:
            return True

        if self.condition == EdgeCondition.BRANCH:
            return result.value == self.branch

        if self.condition == EdgeCondition.CONDITIONAL:
            return self._evaluate_predicate(ctx)

        return False

    def _evaluate_predicate(self, ctx: "ExecutionContext") -> bool:
        try:
            return bool(self.predicate(ctx))
        except Exception as e:
            logger.warning(f"      ⚠ Condition evaluation failed on edge {self.label}: {e}")
            return False
