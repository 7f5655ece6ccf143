"""
Checkpoint Store - one directory of JSON snapshots per workflow run.

Pass an instance as ``Workflow(checkpoint=...)``; the executor hands it a
Checkpoint after every frontier. The same store is then used to look at
what past runs did.

Layout:
    {base_path}/checkpoints/{execution_id}/
        index.json                  # CheckpointIndex for the run
        cp_{step:04d}_{type}.json   # one Checkpoint per file

Every file is replaced atomically, so a crash mid-write leaves the previous
version in place. Disk I/O runs in worker threads.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from flowgraph.schemas.checkpoint import Checkpoint, CheckpointIndex, CheckpointSummary
from flowgraph.utils.io import atomic_write

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _read_model(path: Path, model: type[M]) -> M | None:
    if not path.exists():
        return None
    try:
        return model.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.error(f"Unreadable {model.__name__} at {path}: {e}")
        return None


def _write_model(path: Path, document: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with atomic_write(path) as f:
        f.write(document.model_dump_json(indent=2))


class CheckpointStore:
    """File-backed checkpoint hook with a per-run index for listing and filtering."""

    def __init__(self, base_path: Path | str):
        """
        Args:
            base_path: Root directory, e.g. ``~/.flowgraph/runs``
        """
        self.base_path = Path(base_path)
        self.checkpoints_dir = self.base_path / "checkpoints"
        # Index files are read-modify-write; concurrent saves must not interleave
        self._index_lock = asyncio.Lock()

    def _checkpoint_path(self, execution_id: str, checkpoint_id: str) -> Path:
        return self.checkpoints_dir / execution_id / f"{checkpoint_id}.json"

    def _index_path(self, execution_id: str) -> Path:
        return self.checkpoints_dir / execution_id / "index.json"

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        """
        Write a checkpoint and record it in its run's index.

        Raises:
            OSError: The checkpoint or index could not be written
        """
        path = self._checkpoint_path(checkpoint.execution_id, checkpoint.checkpoint_id)
        await asyncio.to_thread(_write_model, path, checkpoint)
        logger.debug(f"💾 Wrote {path.name}")

        async with self._index_lock:
            index = await self.load_index(checkpoint.execution_id) or CheckpointIndex(
                execution_id=checkpoint.execution_id, workflow=checkpoint.workflow
            )
            index.add_checkpoint(checkpoint)
            await self._save_index(index)

    async def _save_index(self, index: CheckpointIndex) -> None:
        """Caller holds ``_index_lock``."""
        await asyncio.to_thread(_write_model, self._index_path(index.execution_id), index)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def load_checkpoint(
        self, execution_id: str, checkpoint_id: str | None = None
    ) -> Checkpoint | None:
        """Load one checkpoint, or the run's latest when no id is given; None if absent."""
        if checkpoint_id is None:
            index = await self.load_index(execution_id)
            if index is None or index.latest_checkpoint_id is None:
                logger.warning(f"Run {execution_id} has no checkpoints")
                return None
            checkpoint_id = index.latest_checkpoint_id

        path = self._checkpoint_path(execution_id, checkpoint_id)
        checkpoint = await asyncio.to_thread(_read_model, path, Checkpoint)
        if checkpoint is None:
            logger.warning(f"Checkpoint {execution_id}/{checkpoint_id} not found")
        return checkpoint

    async def load_index(self, execution_id: str) -> CheckpointIndex | None:
        return await asyncio.to_thread(_read_model, self._index_path(execution_id), CheckpointIndex)

    async def list_checkpoints(
        self,
        execution_id: str,
        checkpoint_type: str | None = None,
        is_clean: bool | None = None,
    ) -> list[CheckpointSummary]:
        """A run's checkpoint summaries in save order, optionally filtered."""
        index = await self.load_index(execution_id)
        if index is None:
            return []
        return [
            summary
            for summary in index.checkpoints
            if (checkpoint_type is None or summary.checkpoint_type == checkpoint_type)
            and (is_clean is None or summary.is_clean == is_clean)
        ]

    async def list_executions(self) -> list[str]:
        """Ids of every run with a checkpoint directory, sorted."""

        def scan() -> list[str]:
            if not self.checkpoints_dir.is_dir():
                return []
            return sorted(entry.name for entry in self.checkpoints_dir.iterdir() if entry.is_dir())

        return await asyncio.to_thread(scan)

    async def checkpoint_exists(self, execution_id: str, checkpoint_id: str) -> bool:
        return await asyncio.to_thread(self._checkpoint_path(execution_id, checkpoint_id).exists)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def delete_checkpoint(self, execution_id: str, checkpoint_id: str) -> bool:
        """Remove a checkpoint file and its index entry. False if it did not exist."""
        path = self._checkpoint_path(execution_id, checkpoint_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.warning(f"Checkpoint {execution_id}/{checkpoint_id} not found")
            return False

        async with self._index_lock:
            index = await self.load_index(execution_id)
            if index is not None:
                index.remove_checkpoint(checkpoint_id)
                await self._save_index(index)
        logger.info(f"Deleted checkpoint {execution_id}/{checkpoint_id}")
        return True

    async def prune_checkpoints(self, max_age_days: int = 7) -> int:
        """Delete checkpoints of every run created more than ``max_age_days`` ago."""
        cutoff = datetime.now(UTC) - timedelta(days=max_age_days)
        pruned = 0

        for execution_id in await self.list_executions():
            index = await self.load_index(execution_id)
            for summary in list(index.checkpoints) if index else []:
                try:
                    created = datetime.fromisoformat(summary.created_at)
                except ValueError:
                    logger.warning(
                        f"Skipping {summary.checkpoint_id}: bad timestamp {summary.created_at!r}"
                    )
                    continue
                if created.tzinfo is None:
                    created = created.replace(tzinfo=UTC)
                if created < cutoff and await self.delete_checkpoint(
                    execution_id, summary.checkpoint_id
                ):
                    pruned += 1

        if pruned:
            logger.info(f"Pruned {pruned} checkpoints older than {max_age_days} days")
        return pruned
