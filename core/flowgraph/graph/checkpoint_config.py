"""
Checkpoint Configuration - Controls checkpoint behavior during execution.
"""

from dataclasses import dataclass


@dataclass
class CheckpointConfig:
    """
    Configuration for the checkpoint hook of a workflow run.

    A checkpoint is taken after every merged frontier. Controls whether that
    happens, whether the run waits for the write, and when old checkpoints
    are pruned.
    """

    enabled: bool = True

    # Performance
    async_checkpoint: bool = False  # Schedule writes instead of awaiting them

    # What to include in checkpoints
    include_outputs: bool = True

    # Pruning (time-based)
    checkpoint_max_age_days: int = 7
    prune_every_n_steps: int = 0  # 0 disables pruning

    def should_checkpoint(self) -> bool:
        return self.enabled

    def should_prune_checkpoints(self, steps_executed: int) -> bool:
        """
        Check if should prune checkpoints based on execution progress.

        Args:
            steps_executed: Number of frontiers executed so far

        Returns:
            True if should check for old checkpoints and prune them
        """
        return (
            self.enabled
            and self.prune_every_n_steps > 0
            and steps_executed % self.prune_every_n_steps == 0
        )


DEFAULT_CHECKPOINT_CONFIG = CheckpointConfig()


# Fire-and-forget writes, prune every 20 steps
ASYNC_CHECKPOINT_CONFIG = CheckpointConfig(
    async_checkpoint=True,
    prune_every_n_steps=20,
)


DISABLED_CHECKPOINT_CONFIG = CheckpointConfig(
    enabled=False,
)
