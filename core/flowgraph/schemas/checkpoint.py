"""
Checkpoint Schema - what the executor knew after merging one frontier.

A checkpoint names the nodes merged in its step, what every node has
produced so far and which nodes are scheduled next. Checkpoints exist for
inspection and crash diagnostics; runs are not resumed from them.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class Checkpoint(BaseModel):
    """One snapshot in a run's timeline."""

    checkpoint_id: str  # cp_{step:04d}_{type}
    checkpoint_type: str  # frontier_complete | run_complete | run_failed
    execution_id: str
    workflow: str
    created_at: str  # ISO 8601, UTC

    step: int = 0
    frontier: list[str] = Field(default_factory=list)
    next_frontier: list[str] = Field(default_factory=list)
    execution_path: list[str] = Field(default_factory=list)
    visit_counts: dict[str, int] = Field(default_factory=dict)

    # NodeResult.to_dict() per result name
    outputs: dict[str, Any] = Field(default_factory=dict)

    is_clean: bool = True  # no node had failed yet
    description: str = ""

    model_config = {"extra": "allow"}

    @classmethod
    def create(
        cls,
        checkpoint_type: str,
        execution_id: str,
        workflow: str,
        step: int,
        frontier: list[str],
        execution_path: list[str],
        outputs: dict[str, Any],
        next_frontier: list[str] | None = None,
        visit_counts: dict[str, int] | None = None,
        is_clean: bool = True,
        description: str = "",
    ) -> "Checkpoint":
        """Build a checkpoint for ``step``, stamping its id and creation time."""
        return cls(
            checkpoint_id=f"cp_{step:04d}_{checkpoint_type}",
            checkpoint_type=checkpoint_type,
            execution_id=execution_id,
            workflow=workflow,
            created_at=datetime.now(UTC).isoformat(),
            step=step,
            frontier=list(frontier),
            next_frontier=list(next_frontier or []),
            execution_path=list(execution_path),
            visit_counts=dict(visit_counts or {}),
            outputs=outputs,
            is_clean=is_clean,
            description=description or f"step {step}: {', '.join(frontier) or '-'}",
        )


class CheckpointSummary(BaseModel):
    """Index entry for a checkpoint; enough to list and filter without opening it."""

    checkpoint_id: str
    checkpoint_type: str
    created_at: str
    step: int = 0
    frontier: list[str] = Field(default_factory=list)
    is_clean: bool = True
    description: str = ""

    model_config = {"extra": "allow"}

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> "CheckpointSummary":
        return cls.model_validate(checkpoint.model_dump(include=set(cls.model_fields)))


class CheckpointIndex(BaseModel):
    """Ordered summaries of one run's checkpoints."""

    execution_id: str
    workflow: str = ""
    checkpoints: list[CheckpointSummary] = Field(default_factory=list)
    latest_checkpoint_id: str | None = None
    total_checkpoints: int = 0

    model_config = {"extra": "allow"}

    def add_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Append (or replace, when re-saved) and make it the latest."""
        self.checkpoints = [
            cp for cp in self.checkpoints if cp.checkpoint_id != checkpoint.checkpoint_id
        ]
        self.checkpoints.append(CheckpointSummary.from_checkpoint(checkpoint))
        self.latest_checkpoint_id = checkpoint.checkpoint_id
        self.total_checkpoints = len(self.checkpoints)

    def remove_checkpoint(self, checkpoint_id: str) -> None:
        self.checkpoints = [cp for cp in self.checkpoints if cp.checkpoint_id != checkpoint_id]
        self.total_checkpoints = len(self.checkpoints)
        if self.latest_checkpoint_id == checkpoint_id:
            self.latest_checkpoint_id = (
                self.checkpoints[-1].checkpoint_id if self.checkpoints else None
            )

    def get_latest_clean_checkpoint(self) -> CheckpointSummary | None:
        """Most recent checkpoint taken before any node failed."""
        for summary in reversed(self.checkpoints):
            if summary.is_clean:
                return summary
        return None
