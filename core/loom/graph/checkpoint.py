"""
Checkpoint nodes - the only places a run touches its Memory Gateway.

Both factories return plain nodes, so checkpoints sit in a sequential chain
and never run concurrently with a parallel group's branches.
"""

import logging
from collections.abc import Callable
from typing import Any

from loom.graph.context import ExecutionContext
from loom.graph.node import NodeSpec
from loom.memory.gateway import Concept, MemoryNotFound, MemoryScope, MemorySubject
from loom.runtime.event_bus import EventType

logger = logging.getLogger(__name__)


def load_memory_node(
    node_id: str,
    concept: Concept,
    subject: MemorySubject,
    scope: MemoryScope = MemoryScope.PRODUCT,
    merge: Callable[[Any, str | None], Any] | None = None,
) -> NodeSpec:
    """
    Node loading one memory record.

    The content is stored in ``ctx.loaded_memory`` under the concept keyword.
    With `merge`, the carried value becomes ``merge(value, content)``, where
    content is None when nothing is stored; otherwise the value passes through.
    A run without a gateway skips the load.
    """

    async def body(ctx: ExecutionContext, value: Any) -> Any:
        content: str | None = None
        if ctx.memory is None:
            logger.warning(f"No memory gateway configured; skipping load of '{concept.keyword}'")
        else:
            try:
                content = await ctx.memory.load(concept.keyword, subject.name, scope)
            except MemoryNotFound:
                logger.info(f"📭 No stored memory for {concept.keyword}/{subject.name}")
            else:
                ctx.loaded_memory[concept.keyword] = content
                logger.info(f"📥 Loaded memory {concept.keyword}/{subject.name} ({len(content)} chars)")
                await ctx.emit(
                    EventType.MEMORY_LOADED,
                    ctx.event_payload(concept=concept.keyword, subject=subject.name, scope=str(scope)),
                )
        return merge(value, content) if merge is not None else value

    return NodeSpec(
        id=node_id,
        body=body,
        description=f"Load {concept.keyword} about {subject.name} ({scope})",
    )


def save_memory_node(
    node_id: str,
    concept: Concept,
    subject: MemorySubject,
    scope: MemoryScope = MemoryScope.PRODUCT,
    content_builder: Callable[[Any], str] | None = None,
) -> NodeSpec:
    """
    Node saving the carried value (or ``content_builder(value)``) as one record.

    The carried value passes through unchanged. Save failures abort the run.
    """

    async def body(ctx: ExecutionContext, value: Any) -> Any:
        if ctx.memory is None:
            logger.warning(f"No memory gateway configured; skipping save of '{concept.keyword}'")
            return value
        content = content_builder(value) if content_builder is not None else str(value)
        await ctx.memory.save(concept.keyword, subject.name, scope, content)
        logger.info(f"💾 Saved memory {concept.keyword}/{subject.name} ({len(content)} chars)")
        await ctx.emit(
            EventType.MEMORY_SAVED,
            ctx.event_payload(concept=concept.keyword, subject=subject.name, scope=str(scope)),
        )
        return value

    return NodeSpec(
        id=node_id,
        body=body,
        description=f"Save {concept.keyword} about {subject.name} ({scope})",
    )
