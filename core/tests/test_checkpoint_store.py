"""Tests for the file-backed CheckpointStore."""

from datetime import UTC, datetime, timedelta

import pytest

from flowgraph.graph.node import TransformNode
from flowgraph.graph.workflow import Workflow
from flowgraph.schemas.checkpoint import Checkpoint
from flowgraph.storage.checkpoint_store import CheckpointStore


def make_checkpoint(step: int, execution_id: str = "exec-1", **kwargs) -> Checkpoint:
    return Checkpoint.create(
        checkpoint_type=kwargs.pop("checkpoint_type", "frontier_complete"),
        execution_id=execution_id,
        workflow="wf",
        step=step,
        frontier=[f"n{step}"],
        execution_path=[f"n{i}" for i in range(1, step + 1)],
        outputs={f"n{step}": {"ok": True, "value": step}},
        **kwargs,
    )


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(tmp_path)


class TestCheckpointStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, store, tmp_path):
        checkpoint = make_checkpoint(1)
        await store.save_checkpoint(checkpoint)

        assert (tmp_path / "checkpoints" / "exec-1" / "cp_0001_frontier_complete.json").exists()
        loaded = await store.load_checkpoint("exec-1", "cp_0001_frontier_complete")
        assert loaded == checkpoint

    @pytest.mark.asyncio
    async def test_load_latest(self, store):
        for step in (1, 2, 3):
            await store.save_checkpoint(make_checkpoint(step))
        latest = await store.load_checkpoint("exec-1")
        assert latest.step == 3
        assert latest.frontier == ["n3"]

    @pytest.mark.asyncio
    async def test_missing_checkpoints(self, store):
        assert await store.load_checkpoint("nope") is None
        assert await store.load_checkpoint("nope", "cp_0001_frontier_complete") is None
        assert await store.list_checkpoints("nope") == []

    @pytest.mark.asyncio
    async def test_list_with_filters(self, store):
        await store.save_checkpoint(make_checkpoint(1))
        await store.save_checkpoint(make_checkpoint(2, is_clean=False))
        last = make_checkpoint(3, checkpoint_type="run_failed", is_clean=False)
        await store.save_checkpoint(last)

        assert [cp.step for cp in await store.list_checkpoints("exec-1")] == [1, 2, 3]
        dirty = await store.list_checkpoints("exec-1", is_clean=False)
        assert [cp.step for cp in dirty] == [2, 3]
        failed = await store.list_checkpoints("exec-1", checkpoint_type="run_failed")
        assert [cp.checkpoint_id for cp in failed] == ["cp_0003_run_failed"]

        index = await store.load_index("exec-1")
        assert index.get_latest_clean_checkpoint().step == 1
        assert index.total_checkpoints == 3

    @pytest.mark.asyncio
    async def test_delete_moves_latest_back(self, store):
        await store.save_checkpoint(make_checkpoint(1))
        await store.save_checkpoint(make_checkpoint(2))

        assert await store.delete_checkpoint("exec-1", "cp_0002_frontier_complete")
        assert not await store.delete_checkpoint("exec-1", "cp_0002_frontier_complete")
        assert not await store.checkpoint_exists("exec-1", "cp_0002_frontier_complete")
        assert (await store.load_checkpoint("exec-1")).step == 1

    @pytest.mark.asyncio
    async def test_list_executions(self, store):
        assert await store.list_executions() == []
        await store.save_checkpoint(make_checkpoint(1, execution_id="b"))
        await store.save_checkpoint(make_checkpoint(1, execution_id="a"))
        assert await store.list_executions() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_prune_old_checkpoints(self, store):
        old = make_checkpoint(1)
        old.created_at = (datetime.now(UTC) - timedelta(days=30)).isoformat()
        await store.save_checkpoint(old)
        await store.save_checkpoint(make_checkpoint(2))

        assert await store.prune_checkpoints(max_age_days=7) == 1
        remaining = await store.list_checkpoints("exec-1")
        assert [cp.step for cp in remaining] == [2]

    @pytest.mark.asyncio
    async def test_as_workflow_checkpoint_hook(self, store):
        workflow = Workflow(
            "wf",
            [TransformNode("a", lambda i, c: 1), TransformNode("b", lambda i, c: i + 1)],
            [("a", "b")],
            "a",
            checkpoint=store,
        )
        result = await workflow.run()

        summaries = await store.list_checkpoints(result.execution_id)
        assert [cp.frontier for cp in summaries] == [["a"], ["b"]]
        latest = await store.load_checkpoint(result.execution_id)
        assert latest.outputs["b"]["value"] == 2
        assert latest.workflow == "wf"
