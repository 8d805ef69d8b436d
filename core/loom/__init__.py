"""
loom - a graph execution engine for multi-model LLM workflows.

Graphs are built from nodes (model requests, tool execution, sub-graphs,
parallel groups, plain functions) joined by predicate edges, and run by a
GraphExecutor against a model invoker, a tool registry, an optional memory
gateway and an optional event sink.

Example:
    from loom import GraphExecutor, LiteLLMInvoker, ToolRegistry, build_tool_loop

    registry = ToolRegistry()
    registry.register_function(get_time)
    executor = GraphExecutor(invoker=LiteLLMInvoker(), registry=registry)
    answer = await executor.execute(build_tool_loop(model="openai/gpt-4o"), "What time is it?")
"""

from loom.graph import (
    ExecutionContext,
    ExecutionResult,
    GraphBuilder,
    GraphError,
    GraphExecutor,
    GraphSpec,
    NodeKind,
    NodeSpec,
    Reduction,
    build_tool_loop,
)
from loom.llm import LiteLLMInvoker, ModelInvoker, ModelResponse, ScriptedModelInvoker
from loom.memory import FileMemoryGateway, InMemoryGateway, MemoryGateway
from loom.runner import ToolRegistry
from loom.runtime import EventBus, QueueEventSink

__version__ = "0.1.0"

__all__ = [
    "EventBus",
    "ExecutionContext",
    "ExecutionResult",
    "FileMemoryGateway",
    "GraphBuilder",
    "GraphError",
    "GraphExecutor",
    "GraphSpec",
    "InMemoryGateway",
    "LiteLLMInvoker",
    "MemoryGateway",
    "ModelInvoker",
    "ModelResponse",
    "NodeKind",
    "NodeSpec",
    "QueueEventSink",
    "Reduction",
    "ScriptedModelInvoker",
    "ToolRegistry",
    "build_tool_loop",
]
