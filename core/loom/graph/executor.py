"""
Graph Executor - Runs graphs node by node.

The executor:
1. Starts at the graph's start node with the input as the carried value
2. Claims a step from the run's budget and runs the node against the value
3. Picks the first outgoing edge whose predicate matches the new value
4. Moves to that edge's target, until the finish node is reached

Sub-graphs run through the same loop on a child context; parallel groups
fan out to branch nodes and reduce their outputs (see parallel.py). Every
error that aborts a run is a GraphError carrying the failing node, the last
carried value and the path walked.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from loom.graph.context import DEFAULT_MAX_STEPS, ExecutionContext, StepBudget
from loom.graph.conversation import Conversation
from loom.graph.edge import EdgeSpec, GraphSpec
from loom.graph.errors import (
    GraphError,
    NoMatchingEdge,
    NodeFailed,
    RunCancelled,
    UnroutableResponse,
)
from loom.graph.node import NodeKind, NodeSpec
from loom.graph.parallel import run_parallel_group
from loom.llm.provider import ModelInvoker, ModelResponse, Tool, ToolCallRequest, ToolCallResult
from loom.memory.gateway import MemoryGateway
from loom.observability.logging import set_trace_context
from loom.runner.tool_registry import ToolRegistry
from loom.runtime.event_bus import EventSink, EventType


@dataclass
class ExecutionResult:
    """Result of executing a graph, for callers that prefer values to exceptions."""

    success: bool
    output: Any = None
    error: str | None = None
    error_type: str | None = None
    failed_node: str | None = None
    last_value: Any = None
    path: list[str] = field(default_factory=list)
    steps_executed: int = 0
    run_id: str | None = None
    exception: GraphError | None = None


@dataclass
class SubgraphResult:
    """What a sub-graph run hands to its node's result_builder."""

    output: Any
    conversation: Conversation

    @property
    def text(self) -> str:
        if isinstance(self.output, ModelResponse):
            return self.output.text
        return "" if self.output is None else str(self.output)

    def tool_calls(self, name: str | None = None) -> list[ToolCallRequest]:
        """Tool calls the model made during the sub-graph run, oldest first."""
        calls = [
            call
            for message in self.conversation.messages
            if message.role == "assistant" and message.tool_calls
            for call in message.tool_calls
        ]
        if name is not None:
            calls = [c for c in calls if c.name == name]
        return calls


class GraphExecutor:
    """
    Executes graphs.

    Example:
        executor = GraphExecutor(
            invoker=LiteLLMInvoker(),
            registry=registry,
            memory=FileMemoryGateway("./debate-memory"),
            events=bus,
            max_steps=250,
        )

        output = await executor.execute(graph, "topic")
    """

    def __init__(
        self,
        invoker: ModelInvoker | None = None,
        registry: ToolRegistry | None = None,
        memory: MemoryGateway | None = None,
        events: EventSink | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        default_model: str | None = None,
    ):
        """
        Initialize the executor.

        Args:
            invoker: Model invoker shared by every run
            registry: Tools available to tool-executing nodes
            memory: Gateway used by checkpoint nodes
            events: Sink receiving progress events
            max_steps: Node executions allowed per run
            default_model: Model for request nodes that do not name one
        """
        self.invoker = invoker
        self.registry = registry or ToolRegistry()
        self.memory = memory
        self.events = events
        self.max_steps = max_steps
        self.default_model = default_model
        self.logger = logging.getLogger(__name__)

    def new_context(
        self,
        system_prompt: str = "",
        run_id: str | None = None,
        events: EventSink | None = None,
        registry: ToolRegistry | None = None,
    ) -> ExecutionContext:
        """Fresh context for one run, wired to this executor's collaborators."""
        ctx = ExecutionContext(
            invoker=self.invoker,
            registry=registry or self.registry,
            memory=self.memory,
            events=events or self.events,
            budget=StepBudget(max_steps=self.max_steps),
            default_model=self.default_model,
            conversation=Conversation(system_prompt=system_prompt),
        )
        if run_id:
            ctx.run_id = run_id
        return ctx

    async def execute(
        self,
        graph: GraphSpec,
        input: Any,
        context: ExecutionContext | None = None,
    ) -> Any:
        """
        Run `graph` from start to finish and return the finish value.

        Raises:
            GraphValidationError: The graph is malformed
            GraphError: The run failed; see the subclass for why
        """
        graph.validated()
        ctx = context or self.new_context()
        set_trace_context(run_id=ctx.run_id, graph_id=graph.id)

        self.logger.info(f"🚀 Starting run {ctx.run_id}: {graph.id}")
        await ctx.emit(EventType.RUN_STARTED, ctx.event_payload(graph_id=graph.id))

        try:
            output = await self.run_graph(graph, input, ctx)
        except asyncio.CancelledError as e:
            error = RunCancelled("Run cancelled").attach(ctx.current_node, ctx.value, ctx.path)
            self.logger.warning(f"⏹ Run {ctx.run_id} cancelled at {ctx.current_node}")
            await self._emit_failure(ctx, error)
            raise error from e
        except GraphError as e:
            self.logger.error(f"✗ Run {ctx.run_id} failed: {e}")
            await self._emit_failure(ctx, e)
            raise

        self.logger.info(f"✓ Run {ctx.run_id} complete ({ctx.budget.used} steps)")
        await ctx.emit(
            EventType.RUN_FINISHED,
            ctx.event_payload(graph_id=graph.id, steps=ctx.budget.used),
        )
        return output

    async def run(
        self,
        graph: GraphSpec,
        input: Any,
        context: ExecutionContext | None = None,
    ) -> ExecutionResult:
        """Like execute(), but reports failures in an ExecutionResult instead of raising."""
        ctx = context or self.new_context()
        try:
            output = await self.execute(graph, input, ctx)
        except GraphError as e:
            return ExecutionResult(
                success=False,
                error=str(e),
                error_type=type(e).__name__,
                failed_node=e.node_id,
                last_value=e.last_value,
                path=e.path,
                steps_executed=ctx.budget.used,
                run_id=ctx.run_id,
                exception=e,
            )
        return ExecutionResult(
            success=True,
            output=output,
            path=list(ctx.path),
            steps_executed=ctx.budget.used,
            run_id=ctx.run_id,
        )

    async def _emit_failure(self, ctx: ExecutionContext, error: GraphError) -> None:
        await ctx.emit(
            EventType.RUN_FAILED,
            ctx.event_payload(
                error=str(error),
                error_type=type(error).__name__,
                failed_node=error.node_id,
                steps=ctx.budget.used,
            ),
        )

    async def run_graph(self, graph: GraphSpec, value: Any, ctx: ExecutionContext) -> Any:
        """Walk `graph` in `ctx` (a run's root context or a child scope)."""
        ctx.graph_id = graph.id
        ctx.value = value
        node_id = graph.start_node

        while True:
            node = graph.get_node(node_id)
            if node is None:
                raise GraphError(f"Node '{node_id}' not found").attach(node_id, ctx.value, ctx.path)

            ctx.current_node = node_id
            ctx.path.append(node_id)

            try:
                output = await self._run_node(graph, node, ctx.value, ctx)
            except GraphError as e:
                raise e.attach(node_id, ctx.value, ctx.path)
            except Exception as e:
                self.logger.error(f"   ✗ {node.display_name} failed: {e}")
                raise NodeFailed(e).attach(node_id, ctx.value, ctx.path) from e

            if node_id == graph.finish_node:
                return output

            edge = self._select_edge(graph, node, output, ctx)
            if ctx.depth == 0:
                self.logger.info(f"   → Next: {edge.target} ({edge.predicate.name})")
            await ctx.emit(
                EventType.EDGE_TRAVERSED,
                ctx.event_payload(source=edge.source, target=edge.target, predicate=edge.predicate.name),
            )
            ctx.value = output
            node_id = edge.target

    def _select_edge(
        self, graph: GraphSpec, node: NodeSpec, value: Any, ctx: ExecutionContext
    ) -> EdgeSpec:
        for edge in graph.get_outgoing_edges(node.id):
            if edge.matches(value):
                return edge

        if (
            isinstance(value, ModelResponse)
            and not value.has_tool_calls
            and not value.is_assistant_message
        ):
            raise UnroutableResponse(
                f"Model response from '{node.id}' is neither a tool call nor a plain message",
                node_id=node.id,
                last_value=value,
                path=ctx.path,
            )
        predicates = [e.predicate.name for e in graph.get_outgoing_edges(node.id)]
        raise NoMatchingEdge(
            f"No outgoing edge of '{node.id}' matched {type(value).__name__} (tried {predicates})",
            node_id=node.id,
            last_value=value,
            path=ctx.path,
        )

    async def _run_node(
        self, graph: GraphSpec, node: NodeSpec, value: Any, ctx: ExecutionContext
    ) -> Any:
        """Run a single node body. Sentinels pass the value through without a step."""
        if node.is_sentinel:
            return value

        step = ctx.budget.claim()
        set_trace_context(node_id=node.id)
        self.logger.info(
            f"▶ Step {step}: {node.display_name} ({node.kind})",
            extra={"node_id": node.id, "step": step},
        )
        await ctx.emit(
            EventType.NODE_STARTED, ctx.event_payload(node_id=node.id, kind=str(node.kind), step=step)
        )

        start = time.monotonic()
        if node.kind == NodeKind.PLAIN:
            output = node.body(ctx, value)
            if inspect.isawaitable(output):
                output = await output
        elif node.kind == NodeKind.MODEL_REQUEST:
            output = await self._model_request(node, value, ctx)
        elif node.kind == NodeKind.TOOL_EXECUTE:
            output = await self._execute_tools(node, value, ctx)
        elif node.kind == NodeKind.TOOL_RESULT_SEND:
            output = await self._send_tool_results(node, value, ctx)
        elif node.kind == NodeKind.SUBGRAPH:
            output = await self._run_subgraph(node, value, ctx)
        elif node.kind == NodeKind.PARALLEL_GROUP:
            branches = [graph.get_node(b) for b in node.branches]
            output = await run_parallel_group(
                node,
                branches,
                value,
                ctx,
                lambda branch, branch_value, branch_ctx: self._run_node(
                    graph, branch, branch_value, branch_ctx
                ),
            )
        else:
            raise GraphError(f"Unsupported node kind: {node.kind}")

        latency_ms = int((time.monotonic() - start) * 1000)
        self.logger.debug(
            f"   ✓ {node.display_name} done in {latency_ms}ms",
            extra={"node_id": node.id, "latency_ms": latency_ms},
        )
        await ctx.emit(
            EventType.NODE_COMPLETED,
            ctx.event_payload(node_id=node.id, step=step, latency_ms=latency_ms),
        )
        return output

    # === NODE KINDS ===

    def _tools_for(self, node: NodeSpec, ctx: ExecutionContext) -> list[Tool]:
        if node.tools is None:
            return ctx.registry.get_tools()
        return ctx.registry.get_tools(node.tools)

    async def _invoke_model(self, node: NodeSpec, ctx: ExecutionContext) -> ModelResponse:
        if ctx.invoker is None:
            raise GraphError(f"Node '{node.id}' needs a model invoker, but none is configured")
        model = node.model or ctx.default_model
        if not model:
            raise GraphError(f"Node '{node.id}' has no model and no default model is set")

        tools = self._tools_for(node, ctx)
        start = time.monotonic()
        response = await ctx.invoker.invoke(
            model,
            ctx.conversation,
            tools=tools or None,
            response_format=node.response_format,
        )
        latency_ms = int((time.monotonic() - start) * 1000)
        self.logger.info(
            f"   🤖 {model}: "
            + (
                f"{len(response.tool_calls)} tool call(s)"
                if response.has_tool_calls
                else f"{len(response.text)} chars"
            ),
            extra={"model": model, "latency_ms": latency_ms},
        )
        ctx.conversation.add_assistant_response(response)
        return response

    async def _model_request(
        self, node: NodeSpec, value: Any, ctx: ExecutionContext
    ) -> ModelResponse:
        if node.system_prompt and not ctx.conversation.system_prompt:
            ctx.conversation.system_prompt = node.system_prompt

        if node.prompt_builder is not None:
            prompt = node.prompt_builder(value)
        else:
            prompt = value if isinstance(value, str) else None
        if prompt:
            ctx.conversation.add_user_message(prompt)

        return await self._invoke_model(node, ctx)

    async def _execute_tools(
        self, node: NodeSpec, value: Any, ctx: ExecutionContext
    ) -> list[ToolCallResult]:
        if not isinstance(value, ModelResponse) or not value.has_tool_calls:
            raise GraphError(
                f"Node '{node.id}' expects a model response with tool calls, "
                f"got {type(value).__name__}"
            )

        results = []
        for request in value.tool_calls:
            self.logger.info(
                f"   🔧 {request.name}({', '.join(request.arguments)})",
                extra={"tool_name": request.name},
            )
            await ctx.emit(
                EventType.TOOL_CALL_STARTED,
                ctx.event_payload(
                    tool_name=request.name, tool_call_id=request.id, arguments=request.arguments
                ),
            )
            result = await ctx.registry.execute(request)
            await ctx.emit(
                EventType.TOOL_CALL_COMPLETED,
                ctx.event_payload(
                    tool_name=request.name,
                    tool_call_id=request.id,
                    is_error=result.is_error,
                    content=result.content,
                ),
            )
            results.append(result)
        return results

    async def _send_tool_results(
        self, node: NodeSpec, value: Any, ctx: ExecutionContext
    ) -> ModelResponse:
        if not isinstance(value, list) or not all(isinstance(r, ToolCallResult) for r in value):
            raise GraphError(
                f"Node '{node.id}' expects a list of tool results, got {type(value).__name__}"
            )
        ctx.conversation.add_tool_results(value)
        return await self._invoke_model(node, ctx)

    async def _run_subgraph(self, node: NodeSpec, value: Any, ctx: ExecutionContext) -> Any:
        task = node.task_builder(value) if node.task_builder is not None else value
        child = ctx.child(Conversation(system_prompt=node.system_prompt or ""))

        self.logger.info(f"   ↳ Entering sub-graph {node.subgraph.id}")
        output = await self.run_graph(node.subgraph, task, child)
        set_trace_context(graph_id=ctx.graph_id, node_id=node.id)

        if node.result_builder is None:
            return output
        result = node.result_builder(
            ctx, value, SubgraphResult(output=output, conversation=child.conversation)
        )
        if inspect.isawaitable(result):
            result = await result
        return result
