"""
GraphTool - exposes a whole graph as a single tool (agent-as-tool).

Each call starts a separate run of the graph on the tool's executor, with
its own step budget and conversation, and returns the run's output as text.
A failed run surfaces as a tool failure, so the calling model sees the error
instead of the calling run aborting. A FatalToolError inside the run (a
missing API key) is re-raised as itself and aborts the calling run too.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from loom.graph.edge import GraphSpec
from loom.graph.errors import NodeFailed
from loom.graph.executor import GraphExecutor
from loom.llm.provider import ModelResponse
from loom.runner.tool_registry import FatalToolError

logger = logging.getLogger(__name__)


def fatal_cause(error: NodeFailed) -> FatalToolError | None:
    """The FatalToolError behind a (possibly nested) NodeFailed, if any."""
    cause: BaseException | None = error
    while isinstance(cause, NodeFailed):
        cause = cause.cause
    return cause if isinstance(cause, FatalToolError) else None


def output_text(output: Any) -> str:
    if isinstance(output, ModelResponse):
        return output.text
    return "" if output is None else str(output)


@dataclass
class GraphTool:
    """A tool whose invocation runs `graph` on the value of one string parameter."""

    name: str
    description: str
    graph: GraphSpec
    executor: GraphExecutor
    parameter: str = "input"
    parameter_description: str = ""

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                self.parameter: {"type": "string", "description": self.parameter_description}
            },
            "required": [self.parameter],
        }

    async def invoke(self, arguments: dict[str, Any]) -> str:
        logger.info(f"🧩 Running {self.graph.id} as tool '{self.name}'")
        try:
            output = await self.executor.execute(self.graph, arguments[self.parameter])
        except NodeFailed as e:
            fatal = fatal_cause(e)
            if fatal is None:
                raise
            logger.error(f"❌ {self.graph.id} hit a fatal tool error: {fatal}")
            raise fatal from e
        return output_text(output)
