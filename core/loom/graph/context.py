"""
Execution context - per-run mutable state.

One ExecutionContext exists per scope of a run. Nested sub-graphs and
parallel branches get child contexts that share the run-wide pieces (step
budget, counters, collaborators) but own their conversation and position.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from loom.graph.conversation import Conversation
from loom.graph.errors import IterationBudgetExceeded
from loom.llm.provider import ModelInvoker
from loom.memory.gateway import MemoryGateway
from loom.runner.tool_registry import ToolRegistry
from loom.runtime.event_bus import EventSink

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 250


@dataclass
class StepBudget:
    """
    Global cap on node executions for one run.

    Every node claims one step before its body runs; once `max_steps` nodes
    have run, the next claim raises IterationBudgetExceeded. Start and finish
    sentinels do no work and claim nothing.
    """

    max_steps: int = DEFAULT_MAX_STEPS
    used: int = 0

    def claim(self) -> int:
        if self.used >= self.max_steps:
            raise IterationBudgetExceeded(self.max_steps)
        self.used += 1
        return self.used

    @property
    def remaining(self) -> int:
        return max(self.max_steps - self.used, 0)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.max_steps


@dataclass
class ExecutionContext:
    """
    State of one execution scope.

    Run-wide (shared with children): invoker, registry, memory, events,
    budget, counters, loaded_memory, run_id, default_model.
    Scope-local: conversation, current node, carried value, path.
    """

    invoker: ModelInvoker | None = None
    registry: ToolRegistry = field(default_factory=ToolRegistry)
    memory: MemoryGateway | None = None
    events: EventSink | None = None
    budget: StepBudget = field(default_factory=StepBudget)
    run_id: str = field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    default_model: str | None = None

    # Named counters; only node bodies increment them
    counters: dict[str, int] = field(default_factory=dict)
    # Memory contents read by load checkpoints, keyed by concept keyword
    loaded_memory: dict[str, str] = field(default_factory=dict)

    conversation: Conversation = field(default_factory=Conversation)
    graph_id: str | None = None
    current_node: str | None = None
    value: Any = None
    path: list[str] = field(default_factory=list)
    depth: int = 0

    def child(self, conversation: Conversation | None = None) -> "ExecutionContext":
        """
        Context for a nested scope (sub-graph run or parallel branch).

        The child works on its own conversation; pass None for a fresh one.
        """
        return ExecutionContext(
            invoker=self.invoker,
            registry=self.registry,
            memory=self.memory,
            events=self.events,
            budget=self.budget,
            run_id=self.run_id,
            default_model=self.default_model,
            counters=self.counters,
            loaded_memory=self.loaded_memory,
            conversation=conversation if conversation is not None else Conversation(),
            depth=self.depth + 1,
        )

    def increment(self, counter: str, by: int = 1) -> int:
        """Increment a named counter and return its new value."""
        self.counters[counter] = self.counters.get(counter, 0) + by
        return self.counters[counter]

    def counter(self, name: str) -> int:
        return self.counters.get(name, 0)

    async def emit(self, event_name: str, payload: Any = None) -> None:
        """Push an event to the attached sink, if any."""
        if self.events is not None:
            await self.events.emit(event_name, payload)

    def event_payload(self, **data: Any) -> dict[str, Any]:
        """Payload for engine lifecycle events, tagged with the run and node."""
        return {"run_id": self.run_id, "node_id": self.current_node, **data}
