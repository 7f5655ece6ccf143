"""LiteLLM provider - one interface to 100+ LLM backends.

Model strings follow LiteLLM's ``provider/model`` convention, e.g.
``openai/gpt-4o-mini`` or ``anthropic/claude-sonnet-4-20250514``.
"""

import logging
from typing import Any

import litellm

from flowgraph.config import get_api_key, get_preferred_model
from flowgraph.graph.errors import ErrorKind
from flowgraph.llm.provider import LLMProvider, LLMResponse, ModelConfig, ProviderError

logger = logging.getLogger(__name__)

# Checked in order; subclasses come before their bases.
_ERROR_KINDS: tuple[tuple[type[Exception], ErrorKind], ...] = (
    (litellm.Timeout, ErrorKind.TIMEOUT),
    (litellm.RateLimitError, ErrorKind.RATE_LIMIT),
    (litellm.APIConnectionError, ErrorKind.NETWORK),
    (litellm.ServiceUnavailableError, ErrorKind.PROVIDER),
    (litellm.InternalServerError, ErrorKind.PROVIDER),
    (litellm.AuthenticationError, ErrorKind.AUTH),
    (litellm.NotFoundError, ErrorKind.NOT_FOUND),
    (litellm.ContextWindowExceededError, ErrorKind.VALIDATION),
    (litellm.BadRequestError, ErrorKind.VALIDATION),
    (litellm.APIError, ErrorKind.PROVIDER),
)


def classify_litellm_error(exc: Exception) -> ErrorKind:
    """Map a LiteLLM exception to an ErrorKind (unknown errors count as provider errors)."""
    for exc_type, kind in _ERROR_KINDS:
        if isinstance(exc, exc_type):
            return kind
    return ErrorKind.PROVIDER


class LiteLLMProvider(LLMProvider):
    """
    LLM provider backed by ``litellm.acompletion``.

    Example:
        provider = LiteLLMProvider(model="openai/gpt-4o-mini")
        response = await provider.acomplete([{"role": "user", "content": "Hi"}])
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
        **litellm_kwargs: Any,
    ):
        """
        Initialize the provider.

        Args:
            model: LiteLLM model string (default from ~/.flowgraph/configuration.json)
            api_key: API key; defaults to the env var named in configuration,
                then LiteLLM's own provider-specific env vars
            api_base: Custom endpoint (proxies, self-hosted models)
            timeout: Request timeout in seconds
            **litellm_kwargs: Passed through to every acompletion call
        """
        self.model = model or get_preferred_model()
        self.api_key = api_key or get_api_key()
        self.api_base = api_base
        self.timeout = timeout
        self.extra_kwargs = litellm_kwargs

    def __repr__(self) -> str:
        return f"LiteLLMProvider(model='{self.model}')"

    def _request_kwargs(
        self, messages: list[dict[str, Any]], config: ModelConfig
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": config.model or self.model,
            "messages": messages,
            "max_tokens": config.max_tokens,
            **self.extra_kwargs,
            **config.extra,
        }
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.response_format is not None:
            kwargs["response_format"] = config.response_format
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return kwargs

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        model_config: ModelConfig | None = None,
    ) -> LLMResponse:
        config = model_config or ModelConfig()
        kwargs = self._request_kwargs(messages, config)

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            kind = classify_litellm_error(e)
            logger.warning(f"LLM call to {kwargs['model']} failed ({kind}): {e}")
            raise ProviderError(f"{type(e).__name__}: {e}", kind=kind) from e

        return self._to_response(response, kwargs["model"])

    @staticmethod
    def _to_response(response: Any, requested_model: str) -> LLMResponse:
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or requested_model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=getattr(choice, "finish_reason", "") or "",
            raw_response=response,
        )
