"""
Debate web server - streams a live debate to the browser over SSE.

GET /                          the debate page
GET /debate?topic=..&rounds=N  one debate run, streamed as server-sent events

Each /debate request starts one pipeline run with its own QueueEventSink.
The handler forwards the run's presentation events (message,
round_separator, verdict) as SSE events and ends the stream with a
``finish`` event: "Debate finished", or "Error: ..." when the run failed.
A client that disconnects cancels its run.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from importlib import resources
from typing import Any

from aiohttp import web

from loom.graph.errors import GraphError
from loom.graph.executor import GraphExecutor
from loom.llm.provider import ModelInvoker
from loom.memory.gateway import MemoryGateway
from loom.runner.tool_registry import ToolRegistry
from loom.runtime.event_bus import QueueEventSink
from loom.tools.debate import build_debate_registry
from loom.workflows.debate import (
    FINISH,
    MESSAGE,
    ROUND_SEPARATOR,
    VERDICT,
    DebateState,
    build_debate_pipeline,
    verdict_interceptor,
)

logger = logging.getLogger(__name__)

DEFAULT_WEB_TOPIC = "科技发展利大于弊"
DEFAULT_WEB_ROUNDS = 3
MAX_ROUNDS = 10

FINISHED = "Debate finished"


@dataclass
class DebateServerConfig:
    """Configuration for the debate web server."""

    host: str = "0.0.0.0"
    port: int = 8080
    max_steps: int = 300
    pro_model: str | None = None
    con_model: str | None = None
    judge_model: str | None = None
    summary_model: str | None = None
    # Show verdicts recorded as speeches as verdicts
    intercept_verdicts: bool = True


def format_sse(event: str, data: Any) -> bytes:
    """Encode one server-sent event; multi-line data becomes several data lines."""
    if not isinstance(data, str):
        data = json.dumps(data, ensure_ascii=False)
    lines = [f"event: {event}"] + [f"data: {line}" for line in data.split("\n")]
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def parse_rounds(value: str | None) -> int:
    """Round count from the query string; unparseable values use the default."""
    try:
        rounds = int(value) if value else DEFAULT_WEB_ROUNDS
    except ValueError:
        return DEFAULT_WEB_ROUNDS
    return min(max(rounds, 1), MAX_ROUNDS)


class DebateServer:
    """
    Embedded HTTP server running one debate per SSE connection.

    Lifecycle:
        server = DebateServer(invoker, memory, config)
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        memory: MemoryGateway | None = None,
        config: DebateServerConfig | None = None,
        registry: ToolRegistry | None = None,
    ):
        self._invoker = invoker
        self._memory = memory
        self._config = config or DebateServerConfig()
        self._registry = registry or build_debate_registry()
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_index)
        app.router.add_get("/debate", self._handle_debate)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()
        logger.info(f"Debate server started on http://{self._config.host}:{self._config.port}")

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("Debate server stopped")

    @property
    def is_running(self) -> bool:
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None

    async def _handle_index(self, request: web.Request) -> web.Response:
        page = resources.files("loom.server").joinpath("static/index.html").read_text(encoding="utf-8")
        return web.Response(text=page, content_type="text/html")

    async def _handle_debate(self, request: web.Request) -> web.StreamResponse:
        topic = request.query.get("topic", "").strip() or DEFAULT_WEB_TOPIC
        rounds = parse_rounds(request.query.get("rounds"))

        response = web.StreamResponse(
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
        )
        await response.prepare(request)

        sink = QueueEventSink(event_types=[MESSAGE, ROUND_SEPARATOR, VERDICT])
        executor = GraphExecutor(
            invoker=self._invoker,
            registry=self._registry,
            memory=self._memory,
            events=sink,
            max_steps=self._config.max_steps,
        )
        graph = build_debate_pipeline(
            rounds=rounds,
            pro_model=self._config.pro_model,
            con_model=self._config.con_model,
            judge_model=self._config.judge_model,
            summary_model=self._config.summary_model,
            interceptor=verdict_interceptor if self._config.intercept_verdicts else None,
        )
        logger.info(f"🎭 Web debate on '{topic}' ({rounds} rounds)")

        async def run() -> DebateState:
            try:
                return await executor.execute(graph, DebateState(topic=topic, rounds=rounds))
            finally:
                sink.close()

        task = asyncio.create_task(run())
        try:
            async for event in sink:
                await response.write(format_sse(event.type, event.data))
            try:
                await task
            except GraphError as e:
                logger.error(f"Web debate failed: {e}")
                await response.write(format_sse(FINISH, f"Error: {e}"))
            else:
                await response.write(format_sse(FINISH, FINISHED))
        except (ConnectionResetError, asyncio.CancelledError):
            logger.info("Client disconnected; cancelling its debate")
            task.cancel()
            raise
        finally:
            if not task.done():
                task.cancel()

        await response.write_eof()
        return response


def create_app(
    invoker: ModelInvoker,
    memory: MemoryGateway | None = None,
    config: DebateServerConfig | None = None,
) -> web.Application:
    """aiohttp application serving the debate page and stream."""
    return DebateServer(invoker, memory, config).create_app()
