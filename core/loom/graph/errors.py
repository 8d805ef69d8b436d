"""
Graph execution errors.

Every error that unwinds a run derives from GraphError and carries the id of
the node where it happened, the last carried value and the path walked so
far, so callers can report partial progress instead of losing it.

Recoverable conditions (tool handler failures, tolerated branch failures)
are never raised through the executor; they are turned into values and fed
forward in the graph.
"""

from typing import Any


class GraphError(Exception):
    """Base class for errors that abort a graph run."""

    def __init__(
        self,
        message: str,
        node_id: str | None = None,
        last_value: Any = None,
        path: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.last_value = last_value
        self.path = list(path or [])
        # Node ids inside nested sub-graphs, outermost first
        self.inner_nodes: list[str] = []

    def attach(self, node_id: str, last_value: Any, path: list[str]) -> "GraphError":
        """
        Record where the error crossed a graph boundary.

        Called once per enclosing graph while the error unwinds, so the
        outermost graph's node id, carried value and path win. The node ids
        of the nested scopes it came through are kept in ``inner_nodes``.
        """
        if self.node_id is not None and self.node_id != node_id:
            self.inner_nodes.insert(0, self.node_id)
        self.node_id = node_id
        self.last_value = last_value
        self.path = list(path)
        return self

    def __str__(self) -> str:
        if self.node_id:
            return f"{self.message} (node: {self.node_id})"
        return self.message


class GraphValidationError(GraphError):
    """The graph description is malformed (unknown nodes, dead ends, ...)."""

    def __init__(self, errors: list[str]):
        super().__init__("Invalid graph: " + "; ".join(errors))
        self.errors = errors


class NoMatchingEdge(GraphError):
    """No outgoing edge predicate matched the value a node produced."""


class IterationBudgetExceeded(GraphError):
    """The run used up its node-execution step budget."""

    def __init__(self, max_steps: int, **kwargs: Any):
        super().__init__(f"Iteration budget of {max_steps} steps exceeded", **kwargs)
        self.max_steps = max_steps


class UnroutableResponse(GraphError):
    """A model response was neither a tool request nor a plain assistant message."""


class BranchError(GraphError):
    """One branch of a parallel group failed."""

    def __init__(self, branch_index: int, branch_node_id: str, cause: BaseException):
        super().__init__(f"Branch {branch_index} ({branch_node_id}) failed: {cause}")
        self.branch_index = branch_index
        self.branch_node_id = branch_node_id
        self.cause = cause


class ReducerError(GraphError):
    """A parallel group reducer returned something the executor cannot use."""


class RunCancelled(GraphError):
    """The run was cancelled by its caller while a node was suspended."""


class NodeFailed(GraphError):
    """A node body raised something that is not a GraphError (model, tool or memory failure)."""

    def __init__(self, cause: BaseException, **kwargs: Any):
        super().__init__(f"{type(cause).__name__}: {cause}", **kwargs)
        self.cause = cause


class BranchFailure:
    """
    Placeholder a tolerant parallel group puts in a failed branch's slot.

    Reducers see it in place of the branch output; ``error`` says what went
    wrong.
    """

    __slots__ = ("error",)

    def __init__(self, error: BranchError):
        self.error = error

    @property
    def branch_index(self) -> int:
        return self.error.branch_index

    def __repr__(self) -> str:
        return f"BranchFailure(index={self.error.branch_index}, cause={self.error.cause!r})"
