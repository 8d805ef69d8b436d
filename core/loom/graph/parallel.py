"""
Parallel fan-out / fan-in for PARALLEL_GROUP nodes.

All branches start together, each on a deep copy of the input and a forked
conversation, and the group waits for every one of them. Outputs land in
branch declaration order whatever order the branches finish in. The reducer
then gets the full output list and returns a Reduction: either the index of
the output to carry forward or a synthesized value.

Reducers are called as ``reducer(ctx, outputs)`` and may be sync or async.
"""

import asyncio
import copy
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loom.graph.context import ExecutionContext
from loom.graph.errors import BranchError, BranchFailure, GraphError, ReducerError, RunCancelled
from loom.graph.node import NodeSpec
from loom.runtime.event_bus import EventType

logger = logging.getLogger(__name__)

BranchRunner = Callable[[NodeSpec, Any, ExecutionContext], Awaitable[Any]]
Reducer = Callable[[ExecutionContext, list[Any]], "Reduction | Awaitable[Reduction]"]


@dataclass(frozen=True)
class Reduction:
    """What a reducer decided: carry output `index`, or carry `value`."""

    index: int | None = None
    value: Any = None

    @classmethod
    def select(cls, index: int) -> "Reduction":
        """Carry forward the output at 0-based `index`."""
        return cls(index=index)

    @classmethod
    def synthesize(cls, value: Any) -> "Reduction":
        """Carry forward a value built from the outputs."""
        return cls(value=value)

    @property
    def is_selection(self) -> bool:
        return self.index is not None


def clamp_selection(selection: Any, n: int) -> int:
    """
    Turn an externally supplied 1-based selection into a 0-based index.

    Missing or unparseable selections and selections below 1 resolve to the
    first output; selections above `n` resolve to the last.
    """
    if n <= 0:
        raise ValueError("Cannot select from zero outputs")
    if selection is None or isinstance(selection, bool):
        return 0
    try:
        selection = int(selection)
    except (TypeError, ValueError):
        return 0
    if selection < 1:
        return 0
    if selection > n:
        return n - 1
    return selection - 1


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def select_by_index(chooser: Callable[[ExecutionContext, list[Any]], Any]) -> Reducer:
    """
    Reducer that asks `chooser` for a 1-based selection (typically a model).

    The selection is clamped into range. If the chooser raises, the first
    output is selected; cancellation still propagates.
    """

    async def reducer(ctx: ExecutionContext, outputs: list[Any]) -> Reduction:
        try:
            selection = await _maybe_await(chooser(ctx, outputs))
        except Exception as e:
            logger.warning(f"Selection failed, defaulting to the first output: {e}")
            selection = None
        index = clamp_selection(selection, len(outputs))
        logger.info(f"   Selected output {index + 1} of {len(outputs)}")
        return Reduction.select(index)

    return reducer


def select_by_max(key: Callable[[Any], Any]) -> Reducer:
    """Reducer selecting the successful output with the largest `key` (first on ties)."""

    def reducer(ctx: ExecutionContext, outputs: list[Any]) -> Reduction:
        candidates = [(i, o) for i, o in enumerate(outputs) if not isinstance(o, BranchFailure)]
        if not candidates:
            return Reduction.select(0)
        best_index, _ = max(candidates, key=lambda pair: key(pair[1]))
        return Reduction.select(best_index)

    return reducer


def synthesize(fn: Callable[[ExecutionContext, list[Any]], Any]) -> Reducer:
    """Reducer carrying forward whatever `fn` builds from all outputs."""

    async def reducer(ctx: ExecutionContext, outputs: list[Any]) -> Reduction:
        return Reduction.synthesize(await _maybe_await(fn(ctx, outputs)))

    return reducer


def apply_reduction(node: NodeSpec, reduction: Any, outputs: list[Any]) -> Any:
    if not isinstance(reduction, Reduction):
        raise ReducerError(
            f"Reducer of '{node.id}' returned {type(reduction).__name__}, expected a Reduction"
        )
    if not reduction.is_selection:
        return reduction.value
    if not 0 <= reduction.index < len(outputs):
        raise ReducerError(
            f"Reducer of '{node.id}' selected index {reduction.index}, "
            f"but only {len(outputs)} outputs exist"
        )
    return outputs[reduction.index]


async def run_parallel_group(
    node: NodeSpec,
    branches: list[NodeSpec],
    value: Any,
    ctx: ExecutionContext,
    run_branch: BranchRunner,
) -> Any:
    """
    Run `branches` concurrently on copies of `value`, then reduce.

    Raises:
        BranchError: A branch failed and the group does not tolerate failures
            (the lowest failing index wins)
        ReducerError: The reducer failed or returned an unusable reduction
    """
    logger.info(f"   ⑂ Fan-out: executing {len(branches)} branches in parallel")
    for branch in branches:
        logger.info(f"      • {branch.display_name}")
    await ctx.emit(EventType.PARALLEL_STARTED, ctx.event_payload(branches=[b.id for b in branches]))

    async def run_one(branch: NodeSpec) -> Any:
        child = ctx.child(ctx.conversation.fork())
        child.graph_id = ctx.graph_id
        child.current_node = branch.id
        child.path = [branch.id]
        return await run_branch(branch, copy.deepcopy(value), child)

    tasks = [
        asyncio.create_task(run_one(branch), name=f"{node.id}[{i}]:{branch.id}")
        for i, branch in enumerate(branches)
    ]
    try:
        results = await asyncio.gather(*tasks, return_exceptions=True)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    outputs: list[Any] = []
    failures: list[BranchError] = []
    for i, (branch, result) in enumerate(zip(branches, results)):
        if isinstance(result, BaseException):
            cause = RunCancelled("Branch cancelled") if isinstance(result, asyncio.CancelledError) else result
            error = BranchError(i, branch.id, cause)
            failures.append(error)
            outputs.append(BranchFailure(error))
            logger.error(f"      ✗ Branch {branch.display_name}: {cause}")
        else:
            outputs.append(result)
            logger.info(f"      ✓ Branch {branch.display_name}: completed")

    if failures and not node.tolerate_branch_failure:
        first = failures[0]
        raise first from first.cause

    logger.info(f"   ⑃ Fan-in: reducing {len(outputs)} outputs ({len(failures)} failed)")
    try:
        reduction = await _maybe_await(node.reducer(ctx, outputs))
    except GraphError:
        raise
    except Exception as e:
        raise ReducerError(f"Reducer of '{node.id}' failed: {e}") from e

    output = apply_reduction(node, reduction, outputs)
    await ctx.emit(
        EventType.PARALLEL_COMPLETED,
        ctx.event_payload(
            failed=[f.branch_index for f in failures],
            selected=reduction.index,
        ),
    )
    return output
