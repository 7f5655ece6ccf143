"""Pydantic schemas for persisted run state."""

from flowgraph.schemas.checkpoint import Checkpoint, CheckpointIndex, CheckpointSummary

__all__ = ["Checkpoint", "CheckpointIndex", "CheckpointSummary"]
