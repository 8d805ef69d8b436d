"""
GraphBuilder - explicit construction of an immutable GraphSpec.

Example:
    b = GraphBuilder("best-joke")
    b.add_parallel_group("jokes", branches=[gpt, claude, gemini], reducer=pick)
    b.chain(b.START, "jokes", b.FINISH)
    graph = b.build()
"""

import logging
from collections.abc import Callable
from typing import Any

from loom.graph.edge import EdgePredicate, EdgeSpec, GraphSpec, always
from loom.graph.node import NodeKind, NodeSpec

logger = logging.getLogger(__name__)


class GraphBuilder:
    """
    Collects nodes and edges, then produces a validated GraphSpec.

    Every builder starts with a start sentinel (``START``) and a finish
    sentinel (``FINISH``). ``set_start``/``set_finish`` designate other nodes
    instead; unused sentinels are dropped at build time.
    """

    START = "__start__"
    FINISH = "__finish__"

    def __init__(self, graph_id: str, description: str = ""):
        self.graph_id = graph_id
        self.description = description
        self._nodes: dict[str, NodeSpec] = {
            self.START: NodeSpec(id=self.START, kind=NodeKind.START),
            self.FINISH: NodeSpec(id=self.FINISH, kind=NodeKind.FINISH),
        }
        self._edges: list[EdgeSpec] = []
        self._start = self.START
        self._finish = self.FINISH
        self._duplicates: list[str] = []

    def add_node(self, node: NodeSpec | str, **fields: Any) -> str:
        """
        Register a node. Accepts a NodeSpec or an id plus NodeSpec fields.

        Returns:
            The node id
        """
        if isinstance(node, str):
            node = NodeSpec(id=node, **fields)
        elif fields:
            node = node.model_copy(update=fields)
        if node.id in self._nodes:
            # Reported by validation rather than raised, so all problems surface together
            self._duplicates.append(node.id)
        self._nodes[node.id] = node
        return node.id

    def add_edge(self, source: str, predicate: EdgePredicate, target: str, description: str = "") -> None:
        """Add an edge; edges leaving the same node are tried in the order added."""
        self._edges.append(
            EdgeSpec(source=source, target=target, predicate=predicate, description=description)
        )

    def chain(self, *node_ids: str) -> None:
        """Connect consecutive nodes with `always` edges."""
        for source, target in zip(node_ids, node_ids[1:]):
            self.add_edge(source, always, target)

    def add_parallel_group(
        self,
        node_id: str,
        branches: list[NodeSpec | str],
        reducer: Callable[..., Any],
        tolerate_branch_failure: bool = False,
        name: str = "",
    ) -> str:
        """
        Register a parallel group. NodeSpec branches are registered as nodes;
        string branches must name nodes added separately.
        """
        branch_ids = [self.add_node(b) if isinstance(b, NodeSpec) else b for b in branches]
        return self.add_node(
            NodeSpec(
                id=node_id,
                name=name,
                kind=NodeKind.PARALLEL_GROUP,
                branches=branch_ids,
                reducer=reducer,
                tolerate_branch_failure=tolerate_branch_failure,
            )
        )

    def add_subgraph(
        self,
        node_id: str,
        graph: GraphSpec,
        task_builder: Callable[[Any], Any] | None = None,
        result_builder: Callable[..., Any] | None = None,
        system_prompt: str | None = None,
        name: str = "",
    ) -> str:
        """Register a node that runs `graph` on a task built from the carried value."""
        return self.add_node(
            NodeSpec(
                id=node_id,
                name=name,
                kind=NodeKind.SUBGRAPH,
                subgraph=graph,
                task_builder=task_builder,
                result_builder=result_builder,
                system_prompt=system_prompt,
            )
        )

    def set_start(self, node_id: str) -> None:
        if node_id not in self._nodes:
            self.add_node(NodeSpec(id=node_id, kind=NodeKind.START))
        self._start = node_id

    def set_finish(self, node_id: str) -> None:
        if node_id not in self._nodes:
            self.add_node(NodeSpec(id=node_id, kind=NodeKind.FINISH))
        self._finish = node_id

    def build(self, validate: bool = True) -> GraphSpec:
        """
        Produce the GraphSpec.

        Raises:
            GraphValidationError: If validation is on and the graph is malformed
        """
        used = {e.source for e in self._edges} | {e.target for e in self._edges}
        nodes = [
            n
            for n in self._nodes.values()
            if n.id not in (self.START, self.FINISH)
            or n.id in (self._start, self._finish)
            or n.id in used
        ]
        # Duplicates collapse in the dict; keep one entry per extra registration
        nodes.extend(self._nodes[d] for d in self._duplicates)

        graph = GraphSpec(
            id=self.graph_id,
            nodes=nodes,
            edges=list(self._edges),
            start_node=self._start,
            finish_node=self._finish,
            description=self.description,
        )
        if validate:
            graph.validated()
        logger.debug(f"Built graph '{self.graph_id}' with {len(nodes)} nodes, {len(self._edges)} edges")
        return graph
