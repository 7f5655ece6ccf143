"""Tests for WorkflowAgent."""

import asyncio

import pytest
from pydantic import BaseModel

from flowgraph.graph.errors import ErrorKind, NodeError
from flowgraph.graph.node import Node, TransformNode
from flowgraph.graph.workflow import Workflow
from flowgraph.runner.agent import WorkflowAgent


class Answer(BaseModel):
    city: str
    confidence: float


class StallingNode(Node):
    async def execute(self, input, ctx):
        await asyncio.sleep(10)


def single(fn) -> Workflow:
    return Workflow("agent-wf", [TransformNode("answer", fn)], [], "answer")


class TestWorkflowAgent:
    @pytest.mark.asyncio
    async def test_text_reply(self):
        agent = WorkflowAgent("echo", single(lambda message, ctx: message.upper()))
        reply = await agent.run("hello")
        assert reply.success
        assert reply.content == "HELLO"
        assert reply.structured is None
        assert reply.error is None

    @pytest.mark.asyncio
    async def test_model_reply_is_json_plus_structured(self):
        agent = WorkflowAgent("geo", single(lambda m, c: Answer(city="Paris", confidence=0.9)))
        reply = await agent.run("capital of France?")
        assert reply.structured == Answer(city="Paris", confidence=0.9)
        assert Answer.model_validate_json(reply.content).city == "Paris"

    @pytest.mark.asyncio
    async def test_content_dict_is_unpacked(self):
        agent = WorkflowAgent(
            "dict", single(lambda m, c: {"content": "done", "structured": {"n": 1}})
        )
        reply = await agent.run("go")
        assert reply.content == "done"
        assert reply.structured == {"n": 1}

    @pytest.mark.asyncio
    async def test_other_payloads_are_json(self):
        reply = await WorkflowAgent("list", single(lambda m, c: [1, 2])).run("go")
        assert reply.content == "[1, 2]"
        assert reply.structured == [1, 2]

    @pytest.mark.asyncio
    async def test_failed_run(self):
        def refuse(message, ctx):
            raise NodeError("not allowed", kind=ErrorKind.AUTH)

        reply = await WorkflowAgent("strict", single(refuse)).run("go")
        assert not reply.success
        assert reply.content == ""
        assert "not allowed" in reply.error
        assert reply.workflow_result.error.kind == ErrorKind.AUTH

    @pytest.mark.asyncio
    async def test_timeout_cancels_run(self):
        workflow = Workflow("slow", [StallingNode("stall")], [], "stall")
        agent = WorkflowAgent("slow", workflow, timeout=0.05)

        reply = await agent.run("go")
        assert not reply.success
        assert reply.workflow_result.error.kind == ErrorKind.CANCELLED
        assert "timed out" in reply.error

    @pytest.mark.asyncio
    async def test_run_workflow_passes_any_input(self):
        agent = WorkflowAgent("sum", single(lambda numbers, c: sum(numbers)))
        result = await agent.run_workflow([1, 2, 3])
        assert result.final_output == 6

    @pytest.mark.asyncio
    async def test_stream_events(self):
        agent = WorkflowAgent("echo", single(lambda m, c: f"you said {m}"))
        events = [event async for event in agent.run_stream("hi")]

        assert [e["type"] for e in events] == ["text_delta", "result"]
        assert events[0]["text"] == "you said hi"
        assert events[1]["result"].content == "you said hi"

    @pytest.mark.asyncio
    async def test_stream_failure_has_only_result(self):
        def boom(m, c):
            raise RuntimeError("x")

        events = [event async for event in WorkflowAgent("bad", single(boom)).run_stream("hi")]
        assert [e["type"] for e in events] == ["result"]
        assert not events[0]["result"].success
