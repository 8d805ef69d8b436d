"""Tests for the chat assistant, its user channel and graph-backed tools."""

import httpx
import pytest

from loom.config import MissingCredentialError
from loom.graph.errors import NodeFailed, NoMatchingEdge
from loom.graph.executor import GraphExecutor
from loom.llm.mock import ScriptedModelInvoker, structured_response, text_response, tool_call_response
from loom.llm.provider import ModelUnavailable
from loom.runner.tool_registry import ToolRegistry
from loom.tools.chat import ChatChannel, register_tools
from loom.tools.graph_tool import GraphTool
from loom.tools.weather import WeatherClient
from loom.workflows.best_of import JOKE_CRITIC_PROMPT, build_joke_graph
from loom.workflows.chat import ChatAssistant, is_exit_command

CHAT_MODEL = "test/chat"
JOKE_MODELS = ["test/j1", "test/j2"]


def make_channel(answers=None) -> tuple[ChatChannel, list[str]]:
    shown: list[str] = []
    pending = list(answers or [])
    channel = ChatChannel(output=shown.append, input=lambda prompt: pending.pop(0) if pending else "")
    return channel, shown


def last_message(conversation):
    return conversation.messages[-1] if conversation.messages else None


def make_assistant(script, channel) -> ChatAssistant:
    return ChatAssistant.create(
        ScriptedModelInvoker(script),
        model=CHAT_MODEL,
        channel=channel,
        joke_models=JOKE_MODELS,
        poem_models=JOKE_MODELS,
    )


# === CHANNEL AND TOOLS ===


class TestChatTools:
    @pytest.mark.asyncio
    async def test_say_to_user(self):
        channel, shown = make_channel()
        registry = ToolRegistry()
        register_tools(registry, channel)

        result = await registry.execute(tool_call_response("say_to_user", message="hello").tool_calls[0])

        assert result.content == "DONE"
        assert shown == ["hello"]
        assert channel.transcript == ["hello"]

    @pytest.mark.asyncio
    async def test_ask_user_waits_for_answer(self):
        channel, shown = make_channel(answers=["blue"])
        registry = ToolRegistry()
        register_tools(registry, channel)

        result = await registry.execute(
            tool_call_response("ask_user", question="Favourite colour?").tool_calls[0]
        )

        assert result.content == "blue"
        assert shown == ["Favourite colour?"]

    @pytest.mark.asyncio
    async def test_ask_user_without_answer(self):
        channel, _ = make_channel()
        registry = ToolRegistry()
        register_tools(registry, channel)

        result = await registry.execute(tool_call_response("ask_user", question="Still there?").tool_calls[0])
        assert result.content == "(no answer)"

    @pytest.mark.asyncio
    async def test_exit_sets_flag(self):
        channel, shown = make_channel()
        registry = ToolRegistry()
        register_tools(registry, channel)

        await registry.execute(tool_call_response("exit", message="Bye!").tool_calls[0])

        assert channel.exit_requested is True
        assert shown == ["Bye!"]


@pytest.mark.parametrize("text,expected", [("quit", True), (" BYE ", True), ("退出", True), ("hello", False)])
def test_is_exit_command(text, expected):
    assert is_exit_command(text) is expected


# === GRAPH TOOL ===


@pytest.mark.asyncio
async def test_graph_tool_runs_graph_per_call():
    invoker = ScriptedModelInvoker(
        {
            "test/j1": [text_response("joke one"), text_response("joke three")],
            "test/j2": [text_response("joke two"), text_response("joke four")],
            "test/sel": [structured_response({"index": 2}), structured_response({"index": 1})],
        }
    )

    tool = GraphTool(
        name="joke_generator",
        description="Best joke",
        graph=build_joke_graph(models=JOKE_MODELS, selector_model="test/sel"),
        executor=GraphExecutor(invoker=invoker),
        parameter="topic",
    )

    assert tool.input_schema["required"] == ["topic"]
    assert await tool.invoke({"topic": "cats"}) == "joke two"
    assert await tool.invoke({"topic": "dogs"}) == "joke three"


# === ASSISTANT ===


@pytest.mark.asyncio
async def test_assistant_replies_through_say_to_user():
    def script(model, conversation, tools):
        if last_message(conversation).role == "user":
            return tool_call_response("say_to_user", message="💬 [聊天助手] Hello!")
        return text_response("turn over")

    channel, shown = make_channel()
    assistant = make_assistant(script, channel)

    assert await assistant.handle("hi") == "turn over"
    assert shown == ["💬 [聊天助手] Hello!"]
    assert assistant.finished is False


@pytest.mark.asyncio
async def test_assistant_offers_all_tools():
    offered = []

    def script(model, conversation, tools):
        offered.append([t.name for t in tools or []])
        if last_message(conversation).role == "user":
            return tool_call_response("say_to_user", message="hi")
        return text_response("ok")

    channel, _ = make_channel()
    await make_assistant(script, channel).handle("hi")

    assert set(offered[0]) == {
        "say_to_user",
        "ask_user",
        "exit",
        "joke_generator",
        "poem_generator",
        "weather_assistant",
    }


@pytest.mark.asyncio
async def test_assistant_must_use_a_tool():
    channel, _ = make_channel()
    assistant = make_assistant(lambda model, conversation, tools: text_response("Hello!"), channel)

    with pytest.raises(NoMatchingEdge):
        await assistant.handle("hi")


@pytest.mark.asyncio
async def test_assistant_exit():
    def script(model, conversation, tools):
        if last_message(conversation).role == "user":
            return tool_call_response("exit", message="再见！")
        return text_response("bye")

    channel, shown = make_channel()
    assistant = make_assistant(script, channel)
    await assistant.handle("bye")

    assert assistant.finished is True
    assert shown == ["再见！"]


@pytest.mark.asyncio
async def test_assistant_uses_joke_generator():
    def script(model, conversation, tools):
        if model in JOKE_MODELS:
            return text_response(f"joke from {model}")
        if conversation.system_prompt == JOKE_CRITIC_PROMPT:
            return structured_response({"index": 2})

        last = last_message(conversation)
        if last.role == "user":
            return tool_call_response("joke_generator", topic="cats")
        if "joke from" in last.content:
            return tool_call_response("say_to_user", message=f"🎭 [笑话助手] {last.content}")
        return text_response("done")

    channel, shown = make_channel()
    await make_assistant(script, channel).handle("Tell me a joke about cats")

    assert shown == ["🎭 [笑话助手] joke from test/j2"]


def is_weather_agent(conversation) -> bool:
    return conversation.system_prompt.startswith("You are a weather assistant")


@pytest.mark.asyncio
async def test_missing_weather_key_aborts_the_chat_run(monkeypatch):
    monkeypatch.delenv("OWM_API_KEY", raising=False)
    chat_turns = []

    def script(model, conversation, tools):
        if is_weather_agent(conversation):
            return tool_call_response("get_current_weather", city="Paris")
        chat_turns.append(last_message(conversation).role)
        if last_message(conversation).role == "user":
            return tool_call_response("weather_assistant", query="Paris now")
        return text_response("Sorry, weather failed")

    channel, _ = make_channel()

    with pytest.raises(NodeFailed) as exc_info:
        await make_assistant(script, channel).handle("Weather in Paris?")

    assert isinstance(exc_info.value.cause, MissingCredentialError)
    assert exc_info.value.node_id == "execute_tool"
    # The assistant never got a second turn to retry the call
    assert chat_turns == ["user"]


@pytest.mark.asyncio
async def test_unknown_city_is_answered_by_the_weather_agent():
    seen = []

    def script(model, conversation, tools):
        last = last_message(conversation)
        if is_weather_agent(conversation):
            if last.role == "user":
                return tool_call_response("get_current_weather", city="Atlantis")
            seen.append(("weather", last.content))
            return text_response("No weather data for Atlantis")
        if last.role == "user":
            return tool_call_response("weather_assistant", query="Atlantis")
        seen.append(("chat", last.content))
        return text_response("done")

    channel, _ = make_channel()
    assistant = ChatAssistant.create(
        ScriptedModelInvoker(script),
        model=CHAT_MODEL,
        channel=channel,
        weather=WeatherClient(api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(404))),
        joke_models=JOKE_MODELS,
        poem_models=JOKE_MODELS,
    )

    assert await assistant.handle("Weather in Atlantis?") == "done"
    assert seen[0][0] == "weather"
    assert seen[0][1].startswith("ERROR: ")
    assert "Atlantis" in seen[0][1]
    assert seen[1] == ("chat", "No weather data for Atlantis")


@pytest.mark.asyncio
async def test_failed_sub_agent_run_reaches_the_assistant():
    seen_errors = []

    def script(model, conversation, tools):
        last = last_message(conversation)
        if is_weather_agent(conversation):
            return ModelUnavailable("weather model offline", model=model)
        if last.role == "user":
            return tool_call_response("weather_assistant", query="Paris now")
        seen_errors.append(last.content)
        return text_response("Weather is unavailable right now")

    channel, _ = make_channel()
    output = await make_assistant(script, channel).handle("Weather in Paris?")

    assert output == "Weather is unavailable right now"
    assert seen_errors[0].startswith("ERROR: ")
    assert "weather model offline" in seen_errors[0]
