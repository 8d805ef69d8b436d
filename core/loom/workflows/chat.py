"""
Chat assistant - a tool loop that answers only through tools.

The joke picker, the poem picker and a weather agent are exposed to the
assistant as tools (each call is a separate run of that graph). The loop is
built without a direct-reply edge, so the model's first response must be a
tool call; plain text after a tool result ends the turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from loom.config import get_preferred_model
from loom.graph.edge import GraphSpec
from loom.graph.executor import GraphExecutor
from loom.graph.tool_loop import build_tool_loop
from loom.llm.provider import ModelInvoker
from loom.runner.tool_registry import ToolRegistry
from loom.tools import chat as chat_tools
from loom.tools import weather as weather_tools
from loom.tools.chat import ChatChannel
from loom.tools.graph_tool import GraphTool
from loom.tools.weather import WeatherClient
from loom.workflows.best_of import build_joke_graph, build_poem_graph

logger = logging.getLogger(__name__)

EXIT_WORDS = {"quit", "exit", "bye", "退出", "结束"}

CHAT_SYSTEM_PROMPT = """\
You are a friendly chat assistant that can engage in multi-turn conversations.

CRITICAL RULES - YOU MUST FOLLOW THESE ALWAYS:
1. You MUST ALWAYS use tools to communicate with the user
2. NEVER provide direct responses without using tools
3. You cannot speak directly to the user - only through tools

Available tools:
- say_to_user: Send messages to the user (USE THIS FOR ALL COMMUNICATIONS)
- ask_user: Ask the user for input and wait for their response
- exit: End the conversation when the user wants to quit
- joke_generator: Generate high-quality jokes about any topic
- poem_generator: Generate beautiful Chinese and English poems about any keyword
- weather_assistant: Get weather information for any city worldwide (returns formatted output)

Response guidelines:
- For jokes: use joke_generator, then say_to_user with prefix "🎭 [笑话助手] "
- For poems/poetry: use poem_generator, then say_to_user with prefix "🎨 [诗词助手] "
- For weather queries: extract the city name(s) and whether the user asks about now or the
  future, use weather_assistant, then say_to_user with prefix "🌤️ [天气助手] "
- For general chat: use say_to_user with prefix "💬 [聊天助手] "
- For questions: use ask_user to ask for clarification
- For exit requests: use exit

The tools already return formatted text; pass it to say_to_user with the right prefix.
After the user has been answered, reply with a short plain message to end your turn."""

WEATHER_SYSTEM_PROMPT = """\
You are a weather assistant that provides accurate weather information for cities worldwide.

CURRENT DATE AND TIME: {now}

TOOL SELECTION RULES:
- get_current_weather: "now", "current", "today", "现在", "当前", "今天", or no time given
- get_weather_forecast: "tomorrow", "next week", "forecast", "明天", "后天", "未来", "预报",
  or any other future time reference
- get_multiple_weather: several cities in one query (pass them comma-separated)

When in doubt about time, use get_current_weather.
Return the weather information exactly as received from the tools, without wrappers."""


def build_weather_graph(model: str | None = None) -> GraphSpec:
    """Tool loop answering weather questions with the weather tools."""
    return build_tool_loop(
        model=model,
        tools=["get_current_weather", "get_weather_forecast", "get_multiple_weather"],
        system_prompt=WEATHER_SYSTEM_PROMPT.format(now=datetime.now().strftime("%Y-%m-%d %H:%M:%S (%A)")),
        graph_id="weather-assistant",
    )


def build_chat_graph(model: str | None = None) -> GraphSpec:
    return build_tool_loop(
        model=model,
        system_prompt=CHAT_SYSTEM_PROMPT,
        allow_direct_reply=False,
        graph_id="chat-assistant",
    )


@dataclass
class ChatAssistant:
    """
    A chat session: the assistant graph, its executor and the user channel.

    Example:
        assistant = ChatAssistant.create(LiteLLMInvoker())
        await assistant.handle("Tell me a joke about cats")
    """

    executor: GraphExecutor
    graph: GraphSpec
    channel: ChatChannel = field(default_factory=ChatChannel)

    @classmethod
    def create(
        cls,
        invoker: ModelInvoker,
        model: str | None = None,
        channel: ChatChannel | None = None,
        weather: WeatherClient | None = None,
        max_steps: int = 250,
        joke_models: list[str] | None = None,
        poem_models: list[str] | None = None,
    ) -> ChatAssistant:
        """Wire the sub-agents, the tools and the assistant loop."""
        model = model or get_preferred_model()
        channel = channel or ChatChannel()

        weather_registry = ToolRegistry()
        weather_tools.register_tools(weather_registry, weather)
        sub_agents = GraphExecutor(
            invoker=invoker,
            registry=weather_registry,
            max_steps=max_steps,
            default_model=model,
        )

        registry = ToolRegistry()
        chat_tools.register_tools(registry, channel)
        registry.register(
            GraphTool(
                name="joke_generator",
                description=(
                    "Generate the best joke about a given topic using multiple AI models "
                    "and select the funniest one"
                ),
                graph=build_joke_graph(models=joke_models, selector_model=model),
                executor=sub_agents,
                parameter="topic",
                parameter_description="The topic to generate a joke about (e.g., 'programming', 'cats')",
            )
        )
        registry.register(
            GraphTool(
                name="poem_generator",
                description=(
                    "Generate the best Chinese and English poems about a given keyword using "
                    "multiple AI models and select the most relevant ones"
                ),
                graph=build_poem_graph(
                    chinese_models=poem_models, english_models=poem_models, selector_model=model
                ),
                executor=sub_agents,
                parameter="keyword",
                parameter_description="The keyword to write poems about (e.g., '春天', 'love', '月亮')",
            )
        )
        registry.register(
            GraphTool(
                name="weather_assistant",
                description=(
                    "Get weather information for any city worldwide. "
                    "Returns formatted weather information."
                ),
                graph=build_weather_graph(model),
                executor=sub_agents,
                parameter="query",
                parameter_description=(
                    "Weather query - a single city (e.g., 'Beijing') or several cities "
                    "(e.g., 'Tokyo,Paris,London'), plus the time asked about"
                ),
            )
        )

        executor = GraphExecutor(
            invoker=invoker,
            registry=registry,
            max_steps=max_steps,
            default_model=model,
        )
        return cls(executor=executor, graph=build_chat_graph(model), channel=channel)

    @property
    def finished(self) -> bool:
        return self.channel.exit_requested

    async def handle(self, user_input: str) -> str:
        """Run the assistant on one user message; returns its closing text."""
        output = await self.executor.execute(self.graph, user_input)
        return output.text if output is not None else ""


def is_exit_command(text: str) -> bool:
    return text.strip().lower() in EXIT_WORDS
