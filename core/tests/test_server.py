"""Tests for the debate web server and its SSE stream."""

import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from loom.llm.mock import ScriptedModelInvoker, text_response, tool_call_response
from loom.llm.provider import ModelResponse
from loom.memory.gateway import InMemoryGateway
from loom.server.app import DebateServer, DebateServerConfig, format_sse, parse_rounds


def debate_script(fail: bool = False):
    """Debaters record a speech, the judge rules; `fail` empties every debater reply."""

    def script(model, conversation, tools):
        if conversation.messages and conversation.messages[-1].role == "tool":
            return text_response("done", model=model)
        if model == "test/judge":
            return tool_call_response(
                "judge_debate_winner", model=model, winner="反方", judgment_details="反方更有说服力"
            )
        if fail:
            return ModelResponse(content="", model=model)
        return tool_call_response("record_debate_script", model=model, script_content=f"speech by {model}")

    return script


def make_server(script, **config) -> DebateServer:
    return DebateServer(
        ScriptedModelInvoker(script),
        InMemoryGateway(),
        DebateServerConfig(pro_model="test/pro", con_model="test/con", judge_model="test/judge", **config),
    )


def parse_stream(body: str) -> list[tuple[str, str]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = block.split("\n")
        event = lines[0].removeprefix("event: ")
        data = "\n".join(line.removeprefix("data: ") for line in lines[1:])
        events.append((event, data))
    return events


# === SSE HELPERS ===


class TestFormatSse:
    def test_single_line(self):
        assert format_sse("finish", "Debate finished") == b"event: finish\ndata: Debate finished\n\n"

    def test_multi_line_data(self):
        assert format_sse("verdict", "a\nb") == "event: verdict\ndata: a\ndata: b\n\n".encode()

    def test_json_data(self):
        frame = format_sse("message", {"side": "正方", "turn": 1})
        assert frame.decode("utf-8") == 'event: message\ndata: {"side": "正方", "turn": 1}\n\n'


@pytest.mark.parametrize(
    "value,expected", [(None, 3), ("", 3), ("abc", 3), ("0", 1), ("-2", 1), ("4", 4), ("50", 10)]
)
def test_parse_rounds(value, expected):
    assert parse_rounds(value) == expected


# === ROUTES ===


@pytest.mark.asyncio
async def test_index_page():
    app = make_server(debate_script()).create_app()
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/")
        assert resp.status == 200
        assert resp.content_type == "text/html"
        assert "EventSource" in await resp.text()


@pytest.mark.asyncio
async def test_debate_stream():
    app = make_server(debate_script()).create_app()
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/debate", params={"topic": "远程办公利大于弊", "rounds": "1"})
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/event-stream")
        events = parse_stream(await resp.text())

    assert events[0] == ("round_separator", "第 1 轮辩论")
    messages = [json.loads(data) for event, data in events if event == "message"]
    assert [(m["side"], m["turn"]) for m in messages] == [("正方", 1), ("反方", 2)]
    assert messages[0]["speech"] == "speech by test/pro"
    assert ("round_separator", "最终裁决") in events
    verdicts = [data for event, data in events if event == "verdict"]
    assert any("最终获胜方: **反方**" in v for v in verdicts)
    assert events[-1] == ("finish", "Debate finished")


@pytest.mark.asyncio
async def test_failed_debate_ends_with_error():
    app = make_server(debate_script(fail=True)).create_app()
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/debate", params={"topic": "x", "rounds": "2"})
        events = parse_stream(await resp.text())

    assert [event for event, _ in events] == ["finish"]
    assert events[0][1].startswith("Error: ")


# === LIFECYCLE ===


@pytest.mark.asyncio
async def test_start_and_stop():
    server = make_server(debate_script(), host="127.0.0.1", port=0)
    assert server.is_running is False
    assert server.port is None

    await server.start()
    try:
        assert server.is_running is True
        assert server.port > 0
    finally:
        await server.stop()

    assert server.is_running is False
