"""The LLM collaborator seen by LLMNode: one async completion call, one response type."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from flowgraph.graph.errors import ErrorKind, NodeError


@dataclass
class LLMResponse:
    """Text and token usage returned by a completion."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


@dataclass
class ModelConfig:
    """Per-call model settings. ``None`` means "provider default"."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int = 1024
    response_format: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class ProviderError(NodeError):
    """
    An LLM call failed.

    Transport, rate-limit and server errors are retriable; auth, not-found
    and request-validation errors are not (the kind decides).
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PROVIDER,
        retriable: bool | None = None,
    ):
        super().__init__(message, kind=kind, retriable=retriable)


class LLMProvider(ABC):
    """
    Backend interface for LLMNode.

    Subclasses own authentication and wire formats, and must raise
    ProviderError with a kind that says whether a retry can help.
    """

    @abstractmethod
    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        model_config: ModelConfig | None = None,
    ) -> LLMResponse:
        """
        Complete a conversation.

        Args:
            messages: Conversation [{role: "system"|"user"|"assistant", content: str}]
            model_config: Optional per-call settings

        Returns:
            The reply text with model name and token counts

        Raises:
            ProviderError: The call failed; ``kind`` classifies why
        """
