"""Mock LLM provider for tests and offline runs."""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from flowgraph.llm.provider import LLMProvider, LLMResponse, ModelConfig

logger = logging.getLogger(__name__)

Reply = str | BaseException | Callable[[list[dict[str, Any]]], str]


class MockLLMProvider(LLMProvider):
    """
    Scripted LLM provider.

    Replies are consumed in order; the last one repeats once the script runs
    out. A reply may be a string, an exception instance (raised), or a
    callable receiving the message list. With no script the provider echoes
    the last user message.

    Example:
        llm = MockLLMProvider(["draft", ProviderError("busy", ErrorKind.RATE_LIMIT), "final"])
    """

    def __init__(self, responses: Iterable[Reply] | None = None, model: str = "mock"):
        self.responses: list[Reply] = list(responses or [])
        self.model = model
        self.calls: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        model_config: ModelConfig | None = None,
    ) -> LLMResponse:
        self.calls.append({"messages": list(messages), "model_config": model_config})

        if not self.responses:
            user = [m for m in messages if m.get("role") == "user"]
            reply: Reply = f"mock response to: {user[-1]['content']}" if user else "mock response"
        else:
            index = min(len(self.calls), len(self.responses)) - 1
            reply = self.responses[index]

        if isinstance(reply, BaseException):
            logger.debug(f"MockLLMProvider raising scripted {type(reply).__name__}")
            raise reply
        content = reply(messages) if callable(reply) else reply

        return LLMResponse(
            content=content,
            model=(model_config.model if model_config and model_config.model else self.model),
            input_tokens=sum(len(str(m.get("content", "")).split()) for m in messages),
            output_tokens=len(content.split()),
            stop_reason="stop",
        )
