"""Scripted model invoker for offline runs and tests."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loom.llm.provider import ModelInvoker, ModelResponse, Tool, ToolCallRequest

if TYPE_CHECKING:
    from loom.graph.conversation import Conversation

_call_ids = itertools.count(1)


def text_response(content: str, model: str = "mock") -> ModelResponse:
    return ModelResponse(content=content, model=model, stop_reason="stop")


def structured_response(content: dict[str, Any], model: str = "mock") -> ModelResponse:
    return ModelResponse(content=content, model=model, stop_reason="stop")


def tool_call_response(name: str, model: str = "mock", **arguments: Any) -> ModelResponse:
    return ModelResponse(
        content="",
        tool_calls=[ToolCallRequest(id=f"call_{next(_call_ids)}", name=name, arguments=arguments)],
        model=model,
        stop_reason="tool_calls",
    )


@dataclass
class InvokerCall:
    """One recorded invoke() call."""

    model: str
    messages: list[dict[str, Any]]
    tool_names: list[str]
    response_format: dict[str, Any] | None


ScriptFn = Callable[[str, "Conversation", list[Tool] | None], ModelResponse | Awaitable[ModelResponse]]


class ScriptedModelInvoker(ModelInvoker):
    """
    Replays canned responses.

    Either a list consumed in call order (per model when given a dict keyed by
    model id) or a function computing the response from the model id and the
    conversation. Exceptions in the script are raised from invoke(), which
    makes ModelUnavailable/ModelTimeout easy to simulate.
    """

    def __init__(
        self,
        script: list[ModelResponse | Exception] | dict[str, list[ModelResponse | Exception]]
        | ScriptFn
        | None = None,
        delays: dict[str, float] | None = None,
    ):
        self._script = script if script is not None else []
        self._delays = delays or {}
        self.calls: list[InvokerCall] = []

    async def invoke(
        self,
        model: str,
        conversation: Conversation,
        tools: list[Tool] | None = None,
        response_format: dict[str, Any] | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        self.calls.append(
            InvokerCall(
                model=model,
                messages=conversation.to_llm_messages(),
                tool_names=[t.name for t in tools or []],
                response_format=response_format,
            )
        )
        delay = self._delays.get(model)
        if delay:
            await asyncio.sleep(delay)

        if callable(self._script):
            result = self._script(model, conversation, tools)
            if asyncio.iscoroutine(result):
                result = await result
        else:
            queue = self._script[model] if isinstance(self._script, dict) else self._script
            if not queue:
                raise AssertionError(f"ScriptedModelInvoker ran out of responses for {model}")
            result = queue.pop(0)

        if isinstance(result, Exception):
            raise result
        return result
