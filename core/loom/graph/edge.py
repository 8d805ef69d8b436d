"""
Edge Protocol - How nodes connect in a graph.

An edge is a transition from a source node to a target node guarded by a
named predicate over the value the source produced. Outgoing edges are
evaluated in declaration order and the first match wins; predicates only
inspect the value's shape and never cause side effects.

Built-in predicates:
- always: Traverse whatever the value is
- on_tool_call: The model requested one or more tool calls
- on_assistant_message: The model produced a plain text reply
- on_structured: The model produced a structured (JSON) reply
- on_branch_failure: A tolerant parallel group produced a failure marker
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from loom.graph.errors import BranchFailure, GraphValidationError
from loom.graph.node import NodeKind, NodeSpec
from loom.llm.provider import ModelResponse


@dataclass(frozen=True)
class EdgePredicate:
    """A named, pure test over a node's output value."""

    name: str
    fn: Callable[[Any], bool]

    def __call__(self, value: Any) -> bool:
        return bool(self.fn(value))

    def __repr__(self) -> str:
        return f"EdgePredicate({self.name})"


always = EdgePredicate("always", lambda value: True)

on_tool_call = EdgePredicate(
    "on_tool_call",
    lambda value: isinstance(value, ModelResponse) and value.has_tool_calls,
)

on_assistant_message = EdgePredicate(
    "on_assistant_message",
    lambda value: isinstance(value, ModelResponse) and value.is_assistant_message,
)

on_structured = EdgePredicate(
    "on_structured",
    lambda value: isinstance(value, ModelResponse) and value.is_structured,
)

on_branch_failure = EdgePredicate(
    "on_branch_failure",
    lambda value: isinstance(value, BranchFailure),
)


class EdgeSpec(BaseModel):
    """
    Specification for an edge between nodes.

    Examples:
        EdgeSpec(source="request", target="execute_tool", predicate=on_tool_call)
        EdgeSpec(source="request", target="__finish__", predicate=on_assistant_message)
    """

    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    predicate: EdgePredicate = always
    description: str = ""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def matches(self, value: Any) -> bool:
        return self.predicate(value)


class GraphSpec(BaseModel):
    """
    Complete, immutable specification of a graph.

    Built by GraphBuilder; shareable across runs and concurrent executions.
    """

    id: str
    nodes: list[Any] = Field(default_factory=list)  # NodeSpec
    edges: list[EdgeSpec] = Field(default_factory=list)
    start_node: str
    finish_node: str
    description: str = ""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    _node_map: dict[str, NodeSpec] = PrivateAttr(default_factory=dict)
    _outgoing: dict[str, list[EdgeSpec]] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._node_map = {n.id: n for n in self.nodes}
        outgoing: dict[str, list[EdgeSpec]] = {}
        for edge in self.edges:
            outgoing.setdefault(edge.source, []).append(edge)
        self._outgoing = outgoing

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        return self._node_map.get(node_id)

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """All edges leaving a node, in declaration order."""
        return self._outgoing.get(node_id, [])

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        return [e for e in self.edges if e.target == node_id]

    def branch_node_ids(self) -> set[str]:
        """Ids of nodes used as parallel branches."""
        return {b for n in self.nodes if n.kind == NodeKind.PARALLEL_GROUP for b in n.branches}

    def validate(self) -> list[str]:
        """Validate the graph structure. Returns a list of problems (empty when valid)."""
        errors: list[str] = []

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen.add(node.id)

        if not self.get_node(self.start_node):
            errors.append(f"Start node '{self.start_node}' not found")
        if not self.get_node(self.finish_node):
            errors.append(f"Finish node '{self.finish_node}' not found")

        for edge in self.edges:
            if not self.get_node(edge.source):
                errors.append(f"Edge {edge.source}->{edge.target} references missing source")
            if not self.get_node(edge.target):
                errors.append(f"Edge {edge.source}->{edge.target} references missing target")

        for node in self.nodes:
            if node.kind == NodeKind.PARALLEL_GROUP:
                for branch in node.branches:
                    branch_node = self.get_node(branch)
                    if branch_node is None:
                        errors.append(f"Parallel group '{node.id}' references missing branch '{branch}'")
                    elif branch == node.id or branch_node.is_sentinel:
                        errors.append(f"Parallel group '{node.id}' has invalid branch '{branch}'")
            elif node.kind == NodeKind.SUBGRAPH:
                errors.extend(f"{node.id}: {e}" for e in node.subgraph.validate())

        # Branch nodes are entered by their group, never by an edge
        branch_only = {b for b in self.branch_node_ids() if not self.get_incoming_edges(b)}

        for node in self.nodes:
            if node.id == self.finish_node or node.id in branch_only:
                continue
            if not self.get_outgoing_edges(node.id):
                errors.append(f"Node '{node.id}' has no outgoing edge (dead end)")

        if self.get_outgoing_edges(self.finish_node):
            errors.append(f"Finish node '{self.finish_node}' must not have outgoing edges")

        reachable = self._walk(self.start_node, forward=True)
        for node in self.nodes:
            if node.id in reachable or node.id in branch_only:
                continue
            errors.append(f"Node '{node.id}' is unreachable from start")

        reaches_finish = self._walk(self.finish_node, forward=False)
        for node_id in sorted(reachable):
            if node_id not in reaches_finish and self.get_node(node_id):
                errors.append(f"Node '{node_id}' has no path to finish")

        return errors

    def validated(self) -> "GraphSpec":
        """Return self, raising GraphValidationError if the graph is malformed."""
        errors = self.validate()
        if errors:
            raise GraphValidationError(errors)
        return self

    def _walk(self, origin: str, forward: bool) -> set[str]:
        visited: set[str] = set()
        to_visit = [origin]
        while to_visit:
            current = to_visit.pop()
            if current in visited:
                continue
            visited.add(current)
            if forward:
                to_visit.extend(e.target for e in self.get_outgoing_edges(current))
            else:
                to_visit.extend(e.source for e in self.get_incoming_edges(current))
        return visited
