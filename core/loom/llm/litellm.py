"""LiteLLM-backed model invoker.

One invoker serves every provider the workflows mix (OpenAI, OpenRouter,
Gemini, xAI, DeepSeek): LiteLLM routes on the "provider/model" prefix and
reads the matching API key from the environment.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import litellm

from loom.llm.provider import (
    ModelInvoker,
    ModelResponse,
    ModelTimeout,
    ModelUnavailable,
    Tool,
    ToolCallRequest,
)

if TYPE_CHECKING:
    from loom.graph.conversation import Conversation

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.RateLimitError,
    litellm.InternalServerError,
    litellm.AuthenticationError,
    litellm.BadRequestError,
    litellm.NotFoundError,
)


class LiteLLMInvoker(ModelInvoker):
    """
    Model invoker that delegates to litellm.acompletion.

    Failures are surfaced once as ModelUnavailable / ModelTimeout; retries
    are the caller's policy (``num_retries`` is passed through to LiteLLM and
    defaults to 0).
    """

    def __init__(
        self,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        timeout: float = 120.0,
        num_retries: int = 0,
        api_keys: dict[str, str] | None = None,
        api_bases: dict[str, str] | None = None,
    ):
        """
        Args:
            temperature: Sampling temperature
            max_tokens: Default maximum tokens per completion
            timeout: Per-call timeout in seconds
            num_retries: Retries LiteLLM performs before giving up
            api_keys: Optional explicit keys by provider prefix ("openai", "xai", ...)
            api_bases: Optional base URLs by provider prefix
        """
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.num_retries = num_retries
        self.api_keys = api_keys or {}
        self.api_bases = api_bases or {}

    def _provider_kwargs(self, model: str) -> dict[str, Any]:
        provider = model.split("/", 1)[0]
        kwargs: dict[str, Any] = {}
        if provider in self.api_keys:
            kwargs["api_key"] = self.api_keys[provider]
        if provider in self.api_bases:
            kwargs["api_base"] = self.api_bases[provider]
        return kwargs

    async def invoke(
        self,
        model: str,
        conversation: Conversation,
        tools: list[Tool] | None = None,
        response_format: dict[str, Any] | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": conversation.to_llm_messages(),
            "temperature": self.temperature,
            "max_tokens": max_tokens or self.max_tokens,
            "timeout": self.timeout,
            "num_retries": self.num_retries,
            **self._provider_kwargs(model),
        }
        if tools:
            kwargs["tools"] = [t.to_llm_dict() for t in tools]
        if response_format:
            kwargs["response_format"] = response_format

        logger.debug(f"Invoking {model} with {len(conversation)} messages", extra={"model": model})
        try:
            raw = await litellm.acompletion(**kwargs)
        except litellm.Timeout as e:
            raise ModelTimeout(f"{model} timed out: {e}", model=model) from e
        except _UNAVAILABLE_ERRORS as e:
            raise ModelUnavailable(f"{model} unavailable: {e}", model=model) from e

        return self._to_response(model, raw, structured=response_format is not None)

    @staticmethod
    def _to_response(model: str, raw: Any, structured: bool) -> ModelResponse:
        choice = raw.choices[0]
        message = choice.message

        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                arguments = {"_raw": tc.function.arguments}
            if not isinstance(arguments, dict):
                arguments = {"_raw": tc.function.arguments}
            tool_calls.append(ToolCallRequest(id=tc.id, name=tc.function.name, arguments=arguments))

        content: str | dict[str, Any] | None = message.content
        if structured and isinstance(content, str):
            try:
                parsed = json.loads(content)
                if isinstance(parsed, dict):
                    content = parsed
            except json.JSONDecodeError:
                pass  # leave as text; structured callers validate and fall back

        usage = getattr(raw, "usage", None)
        return ModelResponse(
            content=content,
            tool_calls=tool_calls,
            model=getattr(raw, "model", None) or model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            raw_response=raw,
        )
