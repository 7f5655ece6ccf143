"""
WorkflowAgent - expose a workflow as a text-in, text-out agent.

The user message is the workflow input; the output node's payload becomes
the reply. A string payload is the reply content as-is, a pydantic model is
returned as JSON content plus the model as ``structured``, and a dict with a
``content`` key is unpacked the same way.

Example:
    agent = WorkflowAgent("research-agent", workflow)
    reply = await agent.run("What is the capital of France?")
    print(reply.content)
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from flowgraph.graph.context import CancellationToken
from flowgraph.graph.workflow import Workflow, WorkflowResult

logger = logging.getLogger(__name__)


@dataclass
class AgentReply:
    """What a WorkflowAgent run returns."""

    content: str
    structured: Any
    duration_ms: float
    workflow_result: WorkflowResult

    @property
    def success(self) -> bool:
        return self.workflow_result.success

    @property
    def error(self) -> str | None:
        error = self.workflow_result.error
        return str(error) if error else None


def _render(output: Any) -> tuple[str, Any]:
    """Split a workflow output into (content, structured)."""
    if output is None:
        return "", None
    if isinstance(output, str):
        return output, None
    if isinstance(output, BaseModel):
        return output.model_dump_json(), output
    if isinstance(output, dict) and "content" in output:
        return str(output["content"]), output.get("structured")
    try:
        return json.dumps(output, default=str), output
    except (TypeError, ValueError):
        return str(output), output


class WorkflowAgent:
    """
    A named agent backed by a Workflow.

    Args:
        name: Agent name (for logs)
        workflow: The workflow to run per message
        timeout: Optional wall-clock limit per run (seconds); on expiry the
            run is cancelled and reported as a failed reply
    """

    def __init__(self, name: str, workflow: Workflow, timeout: float | None = None):
        self.name = name
        self.workflow = workflow
        self.timeout = timeout

    async def run_workflow(
        self,
        input: Any,
        cancel_token: CancellationToken | None = None,
    ) -> WorkflowResult:
        """Run the workflow with arbitrary input and return the full result."""
        token = cancel_token or CancellationToken()
        timer = None
        if self.timeout is not None:
            loop = asyncio.get_running_loop()
            timer = loop.call_later(
                self.timeout, token.cancel, f"agent '{self.name}' timed out after {self.timeout}s"
            )
        try:
            return await self.workflow.run(input, cancel_token=token)
        finally:
            if timer is not None:
                timer.cancel()

    async def run(
        self,
        message: str,
        cancel_token: CancellationToken | None = None,
    ) -> AgentReply:
        """Run the workflow with ``message`` as its input."""
        logger.info(f"🤖 Agent '{self.name}' received message ({len(message)} chars)")
        result = await self.run_workflow(message, cancel_token)

        if result.success:
            content, structured = _render(result.final_output)
        else:
            logger.warning(f"✗ Agent '{self.name}' failed: {result.error}")
            content, structured = "", None

        return AgentReply(
            content=content,
            structured=structured,
            duration_ms=result.duration_ms,
            workflow_result=result,
        )

    async def run_stream(
        self,
        message: str,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Yield the reply as events: one ``text_delta`` with the whole content,
        then a ``result`` event carrying the AgentReply.
        """
        reply = await self.run(message, cancel_token)
        if reply.content:
            yield {"type": "text_delta", "text": reply.content}
        yield {"type": "result", "result": reply}
