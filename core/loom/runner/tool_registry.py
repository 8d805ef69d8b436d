"""Tool registration and dispatch for tool-calling nodes."""

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import jsonschema

from loom.llm.provider import Tool, ToolCallRequest, ToolCallResult

logger = logging.getLogger(__name__)


class ToolNotFound(LookupError):
    """No tool is registered under the requested name."""

    def __init__(self, name: str, available: list[str]):
        super().__init__(f"Unknown tool: {name}. Available tools: {available or 'none'}")
        self.name = name
        self.available = available


class HandlerError(Exception):
    """A tool handler failed; the failure is reported back to the model."""


class FatalToolError(Exception):
    """A tool cannot run at all (e.g. missing credential); aborts the run."""


@runtime_checkable
class ToolHandler(Protocol):
    """The capability every tool implements: a name, an input schema and invoke()."""

    name: str
    description: str
    input_schema: dict[str, Any]

    async def invoke(self, arguments: dict[str, Any]) -> Any: ...


@dataclass
class FunctionTool:
    """A tool backed by a plain (sync or async) function taking keyword arguments."""

    name: str
    description: str
    func: Callable[..., Any]
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        result = self.func(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass
class DelegatingTool:
    """
    Wraps another tool, overriding its behaviour selectively.

    The override receives the wrapped tool and the call arguments; it may
    delegate to ``inner.invoke`` or answer on its own.
    """

    inner: ToolHandler
    override: Callable[[ToolHandler, dict[str, Any]], Any | Awaitable[Any]]

    @property
    def name(self) -> str:
        return self.inner.name

    @property
    def description(self) -> str:
        return self.inner.description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.inner.input_schema

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        result = self.override(self.inner, arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def schema_from_signature(func: Callable) -> dict[str, Any]:
    """Derive a JSON schema for a function's keyword parameters."""
    sig = inspect.signature(func)
    properties = {}
    required = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls"):
            continue

        param_type = "string"  # Default
        if param.annotation != inspect.Parameter.empty:
            if param.annotation is int:
                param_type = "integer"
            elif param.annotation is float:
                param_type = "number"
            elif param.annotation is bool:
                param_type = "boolean"
            elif param.annotation is dict:
                param_type = "object"
            elif param.annotation is list:
                param_type = "array"

        properties[param_name] = {"type": param_type}

        if param.default == inspect.Parameter.empty:
            required.append(param_name)

    return {"type": "object", "properties": properties, "required": required}


class ToolRegistry:
    """
    Maps tool names to handlers.

    Populated once at construction time and then shared read-only by every
    run and every parallel branch. Overriding one tool for a particular
    consumer (e.g. a web front-end that also pushes events) is done with
    ``wrap`` on a copy, never by subclassing the tool.
    """

    def __init__(self, handlers: list[ToolHandler] | None = None):
        self._tools: dict[str, ToolHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: ToolHandler) -> None:
        """Register a single tool handler under its own name."""
        if handler.name in self._tools:
            logger.warning(f"Tool '{handler.name}' registered twice; keeping the latest")
        self._tools[handler.name] = handler

    def register_function(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
    ) -> FunctionTool:
        """
        Register a function as a tool, auto-generating its input schema.

        Args:
            func: Function to register (sync or async)
            name: Tool name (defaults to function name)
            description: Tool description (defaults to docstring)
        """
        tool_name = name or func.__name__
        tool_desc = description or inspect.getdoc(func) or f"Execute {tool_name}"
        handler = FunctionTool(
            name=tool_name,
            description=tool_desc,
            func=func,
            input_schema=schema_from_signature(func),
        )
        self.register(handler)
        return handler

    def lookup(self, name: str) -> ToolHandler:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFound(name, sorted(self._tools)) from None

    def wrap(
        self,
        name: str,
        override: Callable[[ToolHandler, dict[str, Any]], Any],
    ) -> "ToolRegistry":
        """Return a copy of this registry with one tool wrapped by `override`."""
        copy = ToolRegistry(list(self._tools.values()))
        copy._tools[name] = DelegatingTool(inner=self.lookup(name), override=override)
        return copy

    def merged(self, other: "ToolRegistry") -> "ToolRegistry":
        """Return a registry holding this registry's tools plus `other`'s."""
        return ToolRegistry(list(self._tools.values()) + list(other._tools.values()))

    def get_tools(self, names: list[str] | None = None) -> list[Tool]:
        """Tool definitions for the model, optionally restricted to `names`."""
        selected = self._tools.values() if names is None else [self.lookup(n) for n in names]
        return [
            Tool(name=h.name, description=h.description, parameters=h.input_schema)
            for h in selected
        ]

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, request: ToolCallRequest) -> ToolCallResult:
        """
        Run one tool call and capture its outcome.

        Unknown tools, invalid arguments and handler exceptions all come back
        as failed ToolCallResults so the model can react to them. Only
        FatalToolError propagates.
        """
        try:
            handler = self.lookup(request.name)
        except ToolNotFound as e:
            logger.warning(str(e), extra={"tool_name": request.name})
            return ToolCallResult.failure(request, str(e))

        try:
            jsonschema.validate(request.arguments, handler.input_schema)
        except jsonschema.ValidationError as e:
            logger.warning(
                f"Invalid arguments for tool '{request.name}': {e.message}",
                extra={"tool_name": request.name},
            )
            return ToolCallResult.failure(request, f"Invalid arguments: {e.message}")

        try:
            payload = await handler.invoke(request.arguments)
        except FatalToolError:
            raise
        except Exception as e:
            logger.warning(
                f"Tool '{request.name}' failed: {e}",
                extra={"tool_name": request.name},
            )
            return ToolCallResult.failure(request, json.dumps({"error": str(e)}, ensure_ascii=False))

        return ToolCallResult.success(request, payload)
