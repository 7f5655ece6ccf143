"""Storage backends for run state."""

from flowgraph.storage.checkpoint_store import CheckpointStore

__all__ = ["CheckpointStore"]
