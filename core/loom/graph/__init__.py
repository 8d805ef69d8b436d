"""Graph structures: Nodes, Edges, and Execution."""

from loom.graph.builder import GraphBuilder
from loom.graph.checkpoint import load_memory_node, save_memory_node
from loom.graph.context import ExecutionContext, StepBudget
from loom.graph.conversation import Conversation, Message
from loom.graph.edge import (
    EdgePredicate,
    EdgeSpec,
    GraphSpec,
    always,
    on_assistant_message,
    on_branch_failure,
    on_structured,
    on_tool_call,
)
from loom.graph.errors import (
    BranchError,
    BranchFailure,
    GraphError,
    GraphValidationError,
    IterationBudgetExceeded,
    NodeFailed,
    NoMatchingEdge,
    ReducerError,
    RunCancelled,
    UnroutableResponse,
)
from loom.graph.executor import ExecutionResult, GraphExecutor, SubgraphResult
from loom.graph.node import NodeKind, NodeSpec
from loom.graph.parallel import (
    Reduction,
    clamp_selection,
    select_by_index,
    select_by_max,
    synthesize,
)
from loom.graph.tool_loop import build_tool_loop

__all__ = [
    # Node
    "NodeSpec",
    "NodeKind",
    # Edge
    "EdgeSpec",
    "EdgePredicate",
    "GraphSpec",
    "always",
    "on_tool_call",
    "on_assistant_message",
    "on_structured",
    "on_branch_failure",
    # Construction
    "GraphBuilder",
    "build_tool_loop",
    "load_memory_node",
    "save_memory_node",
    # Execution
    "GraphExecutor",
    "ExecutionContext",
    "ExecutionResult",
    "StepBudget",
    "SubgraphResult",
    "Conversation",
    "Message",
    # Parallel
    "Reduction",
    "clamp_selection",
    "select_by_index",
    "select_by_max",
    "synthesize",
    # Errors
    "GraphError",
    "GraphValidationError",
    "NoMatchingEdge",
    "IterationBudgetExceeded",
    "UnroutableResponse",
    "BranchError",
    "BranchFailure",
    "ReducerError",
    "RunCancelled",
    "NodeFailed",
]
