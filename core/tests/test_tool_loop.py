"""Tests for the request / execute / send-result tool loop."""

import inspect
import warnings

import pytest

from loom.graph import tool_loop
from loom.graph.errors import IterationBudgetExceeded, NodeFailed, NoMatchingEdge
from loom.graph.executor import GraphExecutor
from loom.graph.tool_loop import build_tool_loop
from loom.llm.mock import ScriptedModelInvoker, text_response, tool_call_response
from loom.llm.provider import ModelResponse, ToolCallRequest
from loom.runner.tool_registry import FatalToolError, ToolRegistry
from loom.runtime.event_bus import EventBus, EventType


def make_registry() -> ToolRegistry:
    registry = ToolRegistry()

    def add(a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    def flaky(reason: str) -> str:
        """Always fails."""
        raise RuntimeError(reason)

    def locked() -> str:
        """Needs a credential that is never there."""
        raise FatalToolError("API key missing")

    registry.register_function(add)
    registry.register_function(flaky)
    registry.register_function(locked)
    return registry


def tool_messages(invoker: ScriptedModelInvoker, call: int) -> list[dict]:
    return [m for m in invoker.calls[call].messages if m["role"] == "tool"]


@pytest.mark.asyncio
async def test_direct_reply_finishes():
    invoker = ScriptedModelInvoker([text_response("hello")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())

    output = await executor.execute(build_tool_loop(model="mock"), "hi")

    assert output.text == "hello"
    assert len(invoker.calls) == 1


@pytest.mark.asyncio
async def test_tool_result_is_sent_back():
    invoker = ScriptedModelInvoker(
        [tool_call_response("add", a=2, b=3), text_response("The sum is 5")]
    )
    executor = GraphExecutor(invoker=invoker, registry=make_registry())
    ctx = executor.new_context()

    output = await executor.execute(build_tool_loop(model="mock"), "add 2 and 3", ctx)

    assert output.text == "The sum is 5"
    assert tool_messages(invoker, 1)[0]["content"] == "5"
    assert ctx.path == [
        "__start__",
        "request",
        "execute_tool",
        "send_tool_result",
        "__finish__",
    ]


@pytest.mark.asyncio
async def test_whole_registry_offered_by_default():
    invoker = ScriptedModelInvoker([text_response("hi")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())
    await executor.execute(build_tool_loop(model="mock"), "hi")
    assert invoker.calls[0].tool_names == ["add", "flaky", "locked"]


@pytest.mark.asyncio
async def test_tool_subset():
    invoker = ScriptedModelInvoker([text_response("hi")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())
    await executor.execute(build_tool_loop(model="mock", tools=["add"]), "hi")
    assert invoker.calls[0].tool_names == ["add"]


@pytest.mark.asyncio
async def test_endless_tool_calls_exhaust_budget():
    budget = 7
    invoker = ScriptedModelInvoker(lambda model, conversation, tools: tool_call_response("add", a=1, b=1))
    executor = GraphExecutor(invoker=invoker, registry=make_registry(), max_steps=budget)
    ctx = executor.new_context()

    with pytest.raises(IterationBudgetExceeded):
        await executor.execute(build_tool_loop(model="mock"), "loop forever", ctx)

    assert ctx.budget.used == budget


@pytest.mark.asyncio
async def test_handler_failure_is_fed_back():
    invoker = ScriptedModelInvoker(
        [tool_call_response("flaky", reason="disk full"), text_response("Sorry, that failed")]
    )
    executor = GraphExecutor(invoker=invoker, registry=make_registry())

    output = await executor.execute(build_tool_loop(model="mock"), "try it")

    assert output.text == "Sorry, that failed"
    message = tool_messages(invoker, 1)[0]
    assert message["content"].startswith("ERROR: ")
    assert "disk full" in message["content"]


@pytest.mark.asyncio
async def test_unknown_tool_is_fed_back():
    invoker = ScriptedModelInvoker([tool_call_response("teleport"), text_response("I can't")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())

    await executor.execute(build_tool_loop(model="mock"), "go")

    content = tool_messages(invoker, 1)[0]["content"]
    assert "Unknown tool: teleport" in content


@pytest.mark.asyncio
async def test_invalid_arguments_are_fed_back():
    invoker = ScriptedModelInvoker([tool_call_response("add", a=1), text_response("retrying")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())

    await executor.execute(build_tool_loop(model="mock"), "add")

    assert "Invalid arguments" in tool_messages(invoker, 1)[0]["content"]


@pytest.mark.asyncio
async def test_unparsed_arguments_are_fed_back():
    call = ToolCallRequest(id="call_raw", name="add", arguments={"_raw": "[1, 2]"})
    invoker = ScriptedModelInvoker([ModelResponse(content="", tool_calls=[call]), text_response("retrying")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())

    assert (await executor.execute(build_tool_loop(model="mock"), "add")).text == "retrying"
    assert "Invalid arguments" in tool_messages(invoker, 1)[0]["content"]


@pytest.mark.asyncio
async def test_fatal_tool_error_aborts_run():
    invoker = ScriptedModelInvoker([tool_call_response("locked"), text_response("never sent")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())

    with pytest.raises(NodeFailed) as exc_info:
        await executor.execute(build_tool_loop(model="mock"), "open")

    assert isinstance(exc_info.value.cause, FatalToolError)
    assert exc_info.value.node_id == "execute_tool"
    assert len(invoker.calls) == 1


@pytest.mark.asyncio
async def test_direct_reply_refused_when_tools_required():
    invoker = ScriptedModelInvoker([text_response("I'll just answer")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry())

    with pytest.raises(NoMatchingEdge) as exc_info:
        await executor.execute(build_tool_loop(model="mock", allow_direct_reply=False), "hi")
    assert exc_info.value.node_id == "request"


@pytest.mark.asyncio
async def test_tool_events_are_emitted():
    bus = EventBus()
    invoker = ScriptedModelInvoker([tool_call_response("add", a=1, b=2), text_response("3")])
    executor = GraphExecutor(invoker=invoker, registry=make_registry(), events=bus)

    await executor.execute(build_tool_loop(model="mock"), "sum")

    started = bus.get_history(event_type=EventType.TOOL_CALL_STARTED)
    completed = bus.get_history(event_type=EventType.TOOL_CALL_COMPLETED)
    assert [e.data["tool_name"] for e in started] == ["add"]
    assert completed[0].data["content"] == "3"
    assert completed[0].data["is_error"] is False


def test_module_source_compiles_without_warnings():
    source = inspect.getsource(tool_loop)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, tool_loop.__file__, "exec")
