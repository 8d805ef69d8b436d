"""
Chat Tools - talking to the person at the terminal.

- say_to_user: print a message for the user
- ask_user: ask a question and wait for the answer
- exit: end the conversation

Input is read on a worker thread so a waiting prompt never blocks the event
loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loom.runner.tool_registry import FunctionTool, ToolRegistry

SAY_TO_USER = "say_to_user"
ASK_USER = "ask_user"
EXIT = "exit"


@dataclass
class ChatChannel:
    """Where chat tools write to and read from. One channel per session."""

    output: Callable[[str], Any] = print
    input: Callable[[str], str] = input
    exit_requested: bool = False
    transcript: list[str] = field(default_factory=list)

    def say(self, message: str) -> None:
        self.transcript.append(message)
        self.output(message)

    async def ask(self, question: str) -> str:
        self.say(question)
        return await asyncio.to_thread(self.input, "👤 ")


def register_tools(registry: ToolRegistry, channel: ChatChannel) -> None:
    """Register say_to_user, ask_user and exit bound to `channel`."""

    def say_to_user(message: str) -> str:
        channel.say(message)
        return "DONE"

    async def ask_user(question: str) -> str:
        answer = await channel.ask(question)
        return answer or "(no answer)"

    def exit(message: str = "") -> str:
        if message:
            channel.say(message)
        channel.exit_requested = True
        return "DONE"

    registry.register(
        FunctionTool(
            name=SAY_TO_USER,
            description="Send a message to the user. Use this for every reply.",
            func=say_to_user,
            input_schema={
                "type": "object",
                "properties": {"message": {"type": "string", "description": "Message to show"}},
                "required": ["message"],
            },
        )
    )
    registry.register(
        FunctionTool(
            name=ASK_USER,
            description="Ask the user a question and wait for their answer.",
            func=ask_user,
            input_schema={
                "type": "object",
                "properties": {"question": {"type": "string", "description": "Question to ask"}},
                "required": ["question"],
            },
        )
    )
    registry.register(
        FunctionTool(
            name=EXIT,
            description="End the conversation when the user wants to quit.",
            func=exit,
            input_schema={
                "type": "object",
                "properties": {"message": {"type": "string", "description": "Optional goodbye message"}},
                "required": [],
            },
        )
    )
