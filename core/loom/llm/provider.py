"""Model invoker abstraction for pluggable LLM backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from loom.graph.conversation import Conversation


class ModelError(Exception):
    """Base class for failures of the external model collaborator."""

    def __init__(self, message: str, model: str | None = None):
        super().__init__(message)
        self.model = model


class ModelUnavailable(ModelError):
    """The model endpoint could not be reached or refused the request."""


class ModelTimeout(ModelError):
    """The model call exceeded the caller-supplied timeout."""


@dataclass
class Tool:
    """A tool definition as presented to the model."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_llm_dict(self) -> dict[str, Any]:
        """OpenAI function-calling format (what LiteLLM expects)."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass
class ToolCallRequest:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_llm_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


@dataclass
class ToolCallResult:
    """Outcome of executing one ToolCallRequest."""

    tool_call_id: str
    name: str
    content: str
    is_error: bool = False

    @classmethod
    def success(cls, request: ToolCallRequest, payload: Any) -> ToolCallResult:
        if isinstance(payload, str):
            content = payload
        else:
            content = json.dumps(payload, default=str, ensure_ascii=False)
        return cls(tool_call_id=request.id, name=request.name, content=content)

    @classmethod
    def failure(cls, request: ToolCallRequest, description: str) -> ToolCallResult:
        return cls(
            tool_call_id=request.id,
            name=request.name,
            content=description,
            is_error=True,
        )


@dataclass
class ModelResponse:
    """Response from a model call: text or structured content plus tool calls."""

    content: str | dict[str, Any] | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_assistant_message(self) -> bool:
        """A plain, non-empty text reply with no tool requests."""
        return (
            not self.tool_calls and isinstance(self.content, str) and bool(self.content.strip())
        )

    @property
    def is_structured(self) -> bool:
        return not self.tool_calls and isinstance(self.content, dict)

    @property
    def text(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, ensure_ascii=False)


class ModelInvoker(ABC):
    """
    Abstract model invoker - plug in any LLM backend.

    The graph engine only ever talks to a model through this interface.
    Implementations are shared read-only across runs and parallel branches,
    so they must not keep per-call state on the instance.

    Implementations raise ModelUnavailable or ModelTimeout; they never retry
    on the engine's behalf unless configured to by the caller.
    """

    @abstractmethod
    async def invoke(
        self,
        model: str,
        conversation: Conversation,
        tools: list[Tool] | None = None,
        response_format: dict[str, Any] | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        """
        Send the conversation to `model` and return its response.

        Args:
            model: Model identifier (LiteLLM "provider/model" form)
            conversation: Running conversation, including the system prompt
            tools: Tools the model may call
            response_format: Optional structured output format, e.g.
                {"type": "json_object"}
            max_tokens: Override for the maximum tokens to generate

        Returns:
            ModelResponse with content and any tool-call requests
        """
