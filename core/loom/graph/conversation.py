"""Conversation: message history carried through model and tool nodes."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Literal

from loom.llm.provider import ModelResponse, ToolCallRequest, ToolCallResult


@dataclass
class Message:
    """A single message in a conversation.

    Attributes:
        role: One of "user", "assistant", or "tool".
        content: Message text.
        tool_call_id: For tool messages, the id of the call they answer.
        tool_calls: For assistant messages, the calls the model requested.
        is_error: When True and role is "tool", ``to_llm_dict`` prepends "ERROR: ".
    """

    role: Literal["user", "assistant", "tool"]
    content: str
    tool_call_id: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    is_error: bool = False

    def to_llm_dict(self) -> dict[str, Any]:
        """Convert to OpenAI-format message dict."""
        if self.role == "user":
            return {"role": "user", "content": self.content}

        if self.role == "assistant":
            d: dict[str, Any] = {"role": "assistant", "content": self.content}
            if self.tool_calls:
                d["tool_calls"] = [tc.to_llm_dict() for tc in self.tool_calls]
            return d

        content = f"ERROR: {self.content}" if self.is_error else self.content
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": content}


@dataclass
class Conversation:
    """
    Ordered message history plus a system prompt.

    One conversation belongs to one execution scope: a top-level run, a
    sub-graph run or a parallel branch. Branches work on a fork, so nothing
    they append is visible to siblings or to the parent.
    """

    system_prompt: str = ""
    messages: list[Message] = field(default_factory=list)

    def add_user_message(self, content: str) -> None:
        self.messages.append(Message(role="user", content=content))

    def add_assistant_response(self, response: ModelResponse) -> None:
        self.messages.append(
            Message(
                role="assistant",
                content=response.text,
                tool_calls=list(response.tool_calls) or None,
            )
        )

    def add_tool_results(self, results: list[ToolCallResult]) -> None:
        for result in results:
            self.messages.append(
                Message(
                    role="tool",
                    content=result.content,
                    tool_call_id=result.tool_call_id,
                    is_error=result.is_error,
                )
            )

    def fork(self) -> Conversation:
        return copy.deepcopy(self)

    def last_assistant_text(self) -> str:
        for message in reversed(self.messages):
            if message.role == "assistant" and message.content:
                return message.content
        return ""

    def to_llm_messages(self) -> list[dict[str, Any]]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(m.to_llm_dict() for m in self.messages)
        return messages

    def __len__(self) -> int:
        return len(self.messages)
