"""
Node Protocol - the unit of work in a graph.

A node is pure description: what kind of work to do and the callables that
parameterize it. The executor supplies behaviour per kind:

- plain: call ``body(ctx, value)`` (sync or async) and carry its return value
- model_request: build a prompt from the value, call the model, carry the response
- tool_execute: run every tool call of the carried response through the registry
- tool_result_send: feed tool results back to the model, carry the new response
- start / finish: pass the value through
- subgraph: run an embedded graph on a task built from the value
- parallel_group: run branch nodes concurrently and reduce their outputs
"""

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class NodeKind(StrEnum):
    PLAIN = "plain"
    MODEL_REQUEST = "model_request"
    TOOL_EXECUTE = "tool_execute"
    TOOL_RESULT_SEND = "tool_result_send"
    START = "start"
    FINISH = "finish"
    SUBGRAPH = "subgraph"
    PARALLEL_GROUP = "parallel_group"


class NodeSpec(BaseModel):
    """
    Specification of a node.

    Examples:
        # Plain transform
        NodeSpec(id="shout", body=lambda ctx, value: value.upper())

        # Model request
        NodeSpec(
            id="draft",
            kind=NodeKind.MODEL_REQUEST,
            model="openai/gpt-4o",
            prompt_builder=lambda topic: f"Write a haiku about {topic}",
        )

        # Parallel group
        NodeSpec(
            id="best",
            kind=NodeKind.PARALLEL_GROUP,
            branches=["a", "b", "c"],
            reducer=select_by_max(len),
        )
    """

    id: str
    kind: NodeKind = NodeKind.PLAIN
    name: str = ""
    description: str = ""

    # plain
    body: Callable[..., Any] | None = None

    # model_request / tool_result_send
    model: str | None = Field(default=None, description="Model id; falls back to the context default")
    prompt_builder: Callable[[Any], str] | None = None
    system_prompt: str | None = None
    tools: list[str] | None = Field(
        default=None,
        description="Tool names exposed to the model. None exposes the whole registry.",
    )
    response_format: dict[str, Any] | None = None

    # subgraph
    subgraph: Any = None  # GraphSpec, but avoiding circular import
    task_builder: Callable[[Any], Any] | None = None
    # result_builder(ctx, outer_value, SubgraphResult) -> new carried value
    result_builder: Callable[..., Any] | None = None

    # parallel_group
    branches: list[str] = Field(default_factory=list)
    reducer: Callable[..., Any] | None = None
    tolerate_branch_failure: bool = False

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "NodeSpec":
        if self.kind == NodeKind.PLAIN and self.body is None:
            raise ValueError(f"Plain node '{self.id}' needs a body")
        if self.kind == NodeKind.SUBGRAPH and self.subgraph is None:
            raise ValueError(f"Subgraph node '{self.id}' needs a subgraph")
        if self.kind == NodeKind.PARALLEL_GROUP:
            if not self.branches:
                raise ValueError(f"Parallel group '{self.id}' needs at least one branch")
            if self.reducer is None:
                raise ValueError(f"Parallel group '{self.id}' needs a reducer")
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def is_sentinel(self) -> bool:
        return self.kind in (NodeKind.START, NodeKind.FINISH)
