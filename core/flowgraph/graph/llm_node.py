"""
Boundary nodes - calls to an LLM provider and to tools.

Both collaborators sit outside the engine. These nodes only shape the
request from the context and translate the outcome into a NodeResult:

- LLMNode: provider failures keep the kind the provider assigned
  (transport/rate-limit/server errors retriable, auth/validation not);
  anything else a provider raises is a retriable PROVIDER failure
- ToolNode: argument validation failures are never retried; a tool that
  raises is a retriable TOOL_EXECUTION failure unless it raised NodeError
  with its own kind
"""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from flowgraph.graph.errors import ErrorKind, NodeError
from flowgraph.graph.node import Node, call_maybe_async
from flowgraph.llm.provider import LLMProvider, ModelConfig, ProviderError

if TYPE_CHECKING:
    from flowgraph.graph.context import ExecutionContext

logger = logging.getLogger(__name__)

MessageSource = list[dict[str, Any]] | Callable[..., Any]
PromptSource = str | Callable[..., Any]


class LLMNode(Node):
    """
    Call an LLM and return its text (or a parsed ``output_schema`` model).

    The message list comes from ``messages`` (a list, or a callable
    ``(input, ctx)``); otherwise a single user message is built from
    ``prompt`` (a string, or a callable ``(input, ctx)``), falling back to
    ``str(input)``. ``system`` is prepended as a system message.

    Example:
        LLMNode(
            "summarize",
            provider=LiteLLMProvider(model="openai/gpt-4o-mini"),
            prompt=lambda input, ctx: f"Summarize:\\n{ctx.value('fetch')}",
            system="You are concise.",
            retry_policy=RetryPolicy(max_retries=2),
        )
    """

    def __init__(
        self,
        name: str,
        provider: LLMProvider,
        messages: MessageSource | None = None,
        prompt: PromptSource | None = None,
        system: str = "",
        model_config: ModelConfig | None = None,
        output_schema: type[BaseModel] | None = None,
        **kwargs: Any,
    ):
        super().__init__(name, output_schema=output_schema, **kwargs)
        if messages is not None and prompt is not None:
            raise ValueError(f"LLMNode '{name}': pass messages or prompt, not both")
        self.provider = provider
        self.messages = messages
        self.prompt = prompt
        self.system = system
        self.model_config = model_config

    async def build_messages(self, input: Any, ctx: "ExecutionContext") -> list[dict[str, Any]]:
        if self.messages is not None:
            if callable(self.messages):
                messages = list(await call_maybe_async(self.messages, input, ctx))
            else:
                messages = list(self.messages)
        else:
            if self.prompt is None:
                content = input if isinstance(input, str) else str(input)
            elif callable(self.prompt):
                content = await call_maybe_async(self.prompt, input, ctx)
            else:
                content = self.prompt
            messages = [{"role": "user", "content": content}]

        if self.system:
            messages = [{"role": "system", "content": self.system}, *messages]
        return messages

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        messages = await self.build_messages(input, ctx)
        logger.info(f"   🤖 {self.name}: calling LLM ({len(messages)} messages)")

        try:
            response = await self.provider.acomplete(messages, self.model_config)
        except NodeError:
            raise
        except Exception as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e
        logger.info(
            f"   ✓ {self.name}: {response.output_tokens} output tokens from {response.model}",
            extra={"event": "llm_response"},
        )

        if self.output_schema is None:
            return response.content
        try:
            return self.output_schema.model_validate_json(response.content)
        except ValidationError as e:
            raise NodeError(
                f"LLM output does not match {self.output_schema.__name__}: {e}",
                kind=ErrorKind.VALIDATION,
            ) from e


def validate_arguments(raw: Any, schema: type[BaseModel] | None) -> Any:
    """
    Default argument validator for ToolNode.

    With no schema the raw arguments pass through; with a pydantic model
    they are validated into an instance of it.

    Raises:
        NodeError(VALIDATION, retriable=False): arguments don't match
    """
    if schema is None:
        return raw
    try:
        return schema.model_validate(raw)
    except ValidationError as e:
        raise NodeError(
            f"Invalid arguments for {schema.__name__}: {e}",
            kind=ErrorKind.VALIDATION,
            retriable=False,
        ) from e


class ToolNode(Node):
    """
    Validate arguments, then call ``tool(validated_args)`` (sync or async).

    ``arguments(input, ctx)`` derives the raw arguments (default: the input).

    Example:
        class SearchArgs(BaseModel):
            query: str
            limit: int = 5

        ToolNode("search", tool=search_api, schema=SearchArgs,
                 arguments=lambda input, ctx: {"query": input["topic"]})
    """

    def __init__(
        self,
        name: str,
        tool: Callable[..., Any],
        arguments: Callable[..., Any] | None = None,
        schema: type[BaseModel] | None = None,
        validator: Callable[[Any, Any], Any] = validate_arguments,
        **kwargs: Any,
    ):
        super().__init__(name, **kwargs)
        self.tool = tool
        self.arguments = arguments
        self.schema = schema
        self.validator = validator

    async def _validated_arguments(self, input: Any, ctx: "ExecutionContext") -> Any:
        if self.arguments is None:
            raw = input
        else:
            raw = await call_maybe_async(self.arguments, input, ctx)
        try:
            return self.validator(raw, self.schema)
        except NodeError:
            raise
        except (ValidationError, TypeError, ValueError) as e:
            raise NodeError(
                f"Invalid arguments for tool '{self.name}': {e}",
                kind=ErrorKind.VALIDATION,
                retriable=False,
            ) from e

    async def execute(self, input: Any, ctx: "ExecutionContext") -> Any:
        args = await self._validated_arguments(input, ctx)

        try:
            return await call_maybe_async(self.tool, args)
        except (NodeError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.warning(f"   ✗ Tool {self.name} raised {type(e).__name__}: {e}")
            raise NodeError(
                f"Tool '{self.name}' failed: {type(e).__name__}: {e}",
                kind=ErrorKind.TOOL_EXECUTION,
                retriable=True,
            ) from e
