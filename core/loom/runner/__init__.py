"""Tool registration and dispatch."""

from loom.runner.tool_registry import (
    DelegatingTool,
    FatalToolError,
    FunctionTool,
    HandlerError,
    ToolHandler,
    ToolNotFound,
    ToolRegistry,
)

__all__ = [
    "ToolRegistry",
    "ToolHandler",
    "FunctionTool",
    "DelegatingTool",
    "ToolNotFound",
    "HandlerError",
    "FatalToolError",
]
