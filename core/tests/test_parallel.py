"""Tests for parallel groups: fan-out, ordering, failure handling and reducers."""

import asyncio
import random

import pytest

from loom.graph.builder import GraphBuilder
from loom.graph.errors import BranchError, BranchFailure, NodeFailed, ReducerError, RunCancelled
from loom.graph.executor import GraphExecutor
from loom.graph.node import NodeKind, NodeSpec
from loom.graph.parallel import (
    Reduction,
    clamp_selection,
    select_by_index,
    select_by_max,
    synthesize,
)
from loom.llm.mock import ScriptedModelInvoker, text_response

# === HELPERS ===


def returns(result, delay: float = 0.0):
    async def body(ctx, value):
        await asyncio.sleep(delay)
        return result

    return body


def fails(message: str, delay: float = 0.0):
    async def body(ctx, value):
        await asyncio.sleep(delay)
        raise RuntimeError(message)

    return body


def collect(ctx, outputs):
    return Reduction.synthesize(list(outputs))


def group_graph(bodies, reducer, tolerate: bool = False):
    b = GraphBuilder("group")
    branches = [NodeSpec(id=f"branch_{i}", body=body) for i, body in enumerate(bodies)]
    b.add_parallel_group("group", branches, reducer=reducer, tolerate_branch_failure=tolerate)
    b.chain(b.START, "group", b.FINISH)
    return b.build()


# === ORDERING ===


@pytest.mark.asyncio
async def test_outputs_follow_declaration_order():
    delays = [0.05, 0.0, 0.03, 0.01, 0.04]
    for _ in range(3):
        random.shuffle(delays)
        bodies = [returns(i, delay) for i, delay in enumerate(delays)]
        output = await GraphExecutor().execute(group_graph(bodies, collect), None)
        assert output == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_select_carries_chosen_output():
    graph = group_graph(
        [returns("1"), returns("2"), returns("3")],
        lambda ctx, outputs: Reduction.select(1),
    )
    assert await GraphExecutor().execute(graph, None) == "2"


@pytest.mark.asyncio
async def test_branches_run_concurrently():
    bodies = [returns(i, 0.2) for i in range(5)]
    loop = asyncio.get_running_loop()
    start = loop.time()
    await GraphExecutor().execute(group_graph(bodies, collect), None)
    assert loop.time() - start < 0.8


@pytest.mark.asyncio
async def test_branches_get_isolated_copies_of_the_value():
    def mutate(key):
        def body(ctx, value):
            value[key] = True
            return sorted(value)

        return body

    graph = group_graph([mutate("a"), mutate("b")], collect)
    original = {"shared": True}
    output = await GraphExecutor().execute(graph, original)

    assert output == [["a", "shared"], ["b", "shared"]]
    assert original == {"shared": True}


@pytest.mark.asyncio
async def test_branch_conversations_are_forked():
    b = GraphBuilder("fork")
    b.add_parallel_group(
        "group",
        [
            NodeSpec(id="left", kind=NodeKind.MODEL_REQUEST, model="left", tools=[]),
            NodeSpec(id="right", kind=NodeKind.MODEL_REQUEST, model="right", tools=[]),
        ],
        reducer=lambda ctx, outputs: Reduction.select(0),
    )
    b.chain(b.START, "group", b.FINISH)

    invoker = ScriptedModelInvoker({"left": [text_response("L")], "right": [text_response("R")]})
    executor = GraphExecutor(invoker=invoker)
    ctx = executor.new_context()
    await executor.execute(b.build(), "question", ctx)

    assert len(ctx.conversation) == 0
    for call in invoker.calls:
        assert call.messages == [{"role": "user", "content": "question"}]


# === FAILURES ===


@pytest.mark.asyncio
async def test_tolerated_failure_yields_marker():
    seen = []

    def reducer(ctx, outputs):
        seen.extend(outputs)
        return Reduction.select(0)

    graph = group_graph([returns("ok"), fails("nope"), returns("also ok")], reducer, tolerate=True)
    assert await GraphExecutor().execute(graph, None) == "ok"

    assert seen[0] == "ok"
    assert isinstance(seen[1], BranchFailure)
    assert seen[1].branch_index == 1
    assert isinstance(seen[1].error.cause, RuntimeError)
    assert seen[2] == "also ok"


@pytest.mark.asyncio
async def test_untolerated_failure_reports_lowest_index():
    graph = group_graph(
        [returns("ok"), fails("late", delay=0.05), fails("early")],
        collect,
    )
    with pytest.raises(BranchError) as exc_info:
        await GraphExecutor().execute(graph, None)

    error = exc_info.value
    assert error.branch_index == 1
    assert error.branch_node_id == "branch_1"
    assert error.node_id == "group"
    assert "late" in str(error.cause)


@pytest.mark.asyncio
async def test_all_branches_finish_before_failure_is_raised():
    finished = []

    async def slow(ctx, value):
        await asyncio.sleep(0.05)
        finished.append("slow")
        return "slow"

    graph = group_graph([fails("fast"), slow], collect)
    with pytest.raises(BranchError):
        await GraphExecutor().execute(graph, None)
    assert finished == ["slow"]


# === REDUCERS ===


@pytest.mark.asyncio
async def test_out_of_range_selection_is_reducer_error():
    graph = group_graph([returns(1), returns(2)], lambda ctx, outputs: Reduction.select(5))
    with pytest.raises(ReducerError) as exc_info:
        await GraphExecutor().execute(graph, None)
    assert exc_info.value.node_id == "group"


@pytest.mark.asyncio
async def test_non_reduction_return_is_reducer_error():
    graph = group_graph([returns(1)], lambda ctx, outputs: outputs[0])
    with pytest.raises(ReducerError):
        await GraphExecutor().execute(graph, None)


@pytest.mark.asyncio
async def test_raising_reducer_is_reducer_error():
    def broken(ctx, outputs):
        raise KeyError("missing")

    with pytest.raises(ReducerError):
        await GraphExecutor().execute(group_graph([returns(1)], broken), None)


@pytest.mark.asyncio
async def test_select_by_index_clamps_chooser_answer():
    graph = group_graph(
        [returns("a"), returns("b"), returns("c")],
        select_by_index(lambda ctx, outputs: 7),
    )
    assert await GraphExecutor().execute(graph, None) == "c"


@pytest.mark.asyncio
async def test_select_by_index_falls_back_when_chooser_fails():
    async def chooser(ctx, outputs):
        raise RuntimeError("selector down")

    graph = group_graph([returns("a"), returns("b")], select_by_index(chooser))
    assert await GraphExecutor().execute(graph, None) == "a"


@pytest.mark.asyncio
async def test_select_by_max_skips_failures():
    graph = group_graph(
        [returns("short"), fails("x"), returns("the longest one")],
        select_by_max(len),
        tolerate=True,
    )
    assert await GraphExecutor().execute(graph, None) == "the longest one"


@pytest.mark.asyncio
async def test_synthesize_builds_new_value():
    graph = group_graph(
        [returns(1), returns(2), returns(3)],
        synthesize(lambda ctx, outputs: sum(outputs)),
    )
    assert await GraphExecutor().execute(graph, None) == 6


class TestClampSelection:
    def test_in_range(self):
        assert clamp_selection(2, 3) == 1

    def test_above_range_takes_last(self):
        assert clamp_selection(7, 3) == 2

    def test_missing_takes_first(self):
        assert clamp_selection(None, 3) == 0

    @pytest.mark.parametrize("selection", [0, -1, -50])
    def test_below_range_takes_first(self, selection):
        assert clamp_selection(selection, 3) == 0

    def test_unparseable_takes_first(self):
        assert clamp_selection("best", 3) == 0

    def test_numeric_string(self):
        assert clamp_selection("3", 3) == 2

    def test_no_outputs(self):
        with pytest.raises(ValueError):
            clamp_selection(1, 0)


# === BUDGET AND CANCELLATION ===


@pytest.mark.asyncio
async def test_each_branch_claims_a_step():
    executor = GraphExecutor()
    ctx = executor.new_context()
    await executor.execute(group_graph([returns(1), returns(2), returns(3)], collect), None, ctx)
    # The group itself plus one per branch
    assert ctx.budget.used == 4


@pytest.mark.asyncio
async def test_budget_exhausted_inside_branches():
    graph = group_graph([returns(1), returns(2), returns(3)], collect)
    with pytest.raises(BranchError) as exc_info:
        await GraphExecutor(max_steps=2).execute(graph, None)
    assert exc_info.value.branch_index == 1


@pytest.mark.asyncio
async def test_cancelling_the_run_cancels_branches():
    started = asyncio.Event()
    cancelled = []

    async def wait_forever(ctx, value):
        started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    graph = group_graph([wait_forever, wait_forever], collect)
    task = asyncio.create_task(GraphExecutor().execute(graph, None))
    await started.wait()
    task.cancel()

    with pytest.raises(RunCancelled) as exc_info:
        await task
    assert exc_info.value.node_id == "group"
    assert cancelled == [True, True]


@pytest.mark.asyncio
async def test_nested_failure_inside_branch_keeps_cause():
    inner = GraphBuilder("inner")
    inner.add_node("fail", body=lambda ctx, value: 1 / 0)
    inner.chain(inner.START, "fail", inner.FINISH)

    b = GraphBuilder("outer")
    b.add_parallel_group(
        "group",
        [NodeSpec(id="sub", kind=NodeKind.SUBGRAPH, subgraph=inner.build())],
        reducer=collect,
    )
    b.chain(b.START, "group", b.FINISH)

    with pytest.raises(BranchError) as exc_info:
        await GraphExecutor().execute(b.build(), None)
    assert isinstance(exc_info.value.cause, NodeFailed)
