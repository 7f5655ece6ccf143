"""LLM provider abstraction."""

from flowgraph.llm.litellm import LiteLLMProvider
from flowgraph.llm.mock import MockLLMProvider
from flowgraph.llm.provider import LLMProvider, LLMResponse, ModelConfig, ProviderError

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ModelConfig",
    "ProviderError",
    "LiteLLMProvider",
    "MockLLMProvider",
]
