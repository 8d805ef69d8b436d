r"""
Tool-call loop - the request / execute / send-result cycle.

    start -> request --on_tool_call--> execute_tool -> send_tool_result
                 \                         ^                 |
                  \                        +--on_tool_call---+
                   \--on_assistant_message--> finish <--on_assistant_message

The loop has no counter of its own. Each pass claims steps from the run's
budget, so a model that never stops calling tools ends the run with
IterationBudgetExceeded. A response that is neither a tool call nor a plain
message ends it with UnroutableResponse.
"""

from collections.abc import Callable
from typing import Any

from loom.graph.builder import GraphBuilder
from loom.graph.edge import GraphSpec, always, on_assistant_message, on_tool_call
from loom.graph.node import NodeKind, NodeSpec

REQUEST = "request"
EXECUTE_TOOL = "execute_tool"
SEND_TOOL_RESULT = "send_tool_result"


def build_tool_loop(
    model: str | None = None,
    tools: list[str] | None = None,
    system_prompt: str | None = None,
    prompt_builder: Callable[[Any], str] | None = None,
    allow_direct_reply: bool = True,
    graph_id: str = "tool-loop",
) -> GraphSpec:
    """
    Build a tool-call loop graph.

    Args:
        model: Model to call (None uses the run's default model)
        tools: Tool names offered to the model (None offers the whole registry)
        system_prompt: System prompt for the loop's conversation
        prompt_builder: Turns the loop input into the first user message;
            by default a string input is used as-is
        allow_direct_reply: Let the first response finish the loop without a
            tool call. When False the model must call at least one tool.
        graph_id: Id of the produced graph

    Returns:
        The loop graph; its finish value is the final ModelResponse
    """
    b = GraphBuilder(graph_id, description="Model request / tool execution loop")
    b.add_node(
        NodeSpec(
            id=REQUEST,
            kind=NodeKind.MODEL_REQUEST,
            model=model,
            tools=tools,
            system_prompt=system_prompt,
            prompt_builder=prompt_builder,
        )
    )
    b.add_node(NodeSpec(id=EXECUTE_TOOL, kind=NodeKind.TOOL_EXECUTE))
    b.add_node(NodeSpec(id=SEND_TOOL_RESULT, kind=NodeKind.TOOL_RESULT_SEND, model=model, tools=tools))

    b.add_edge(b.START, always, REQUEST)
    if allow_direct_reply:
        b.add_edge(REQUEST, on_assistant_message, b.FINISH)
    b.add_edge(REQUEST, on_tool_call, EXECUTE_TOOL)
    b.add_edge(EXECUTE_TOOL, always, SEND_TOOL_RESULT)
    b.add_edge(SEND_TOOL_RESULT, on_assistant_message, b.FINISH)
    b.add_edge(SEND_TOOL_RESULT, on_tool_call, EXECUTE_TOOL)
    return b.build()
