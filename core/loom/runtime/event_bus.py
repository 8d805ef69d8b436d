"""
Event Bus - ordered, named-event stream for run progress.

The executor and node bodies push events through the EventSink interface:
a single ``emit(event_name, payload)`` coroutine. Two sinks are provided:

- EventBus: pub/sub with history, for in-process observers (CLI, tests)
- QueueEventSink: an asyncio.Queue a push transport (SSE) drains

Events from one run are emitted from a single execution path (parallel
branches aside), so subscribers see them in emission order. Every event gets a
per-sink sequence number.
"""

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Event names emitted by the engine and the bundled workflows."""

    # Presentation events (live transcript)
    MESSAGE = "message"
    ROUND_SEPARATOR = "round_separator"
    VERDICT = "verdict"
    FINISH = "finish"

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_FINISHED = "run_finished"
    RUN_FAILED = "run_failed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    EDGE_TRAVERSED = "edge_traversed"

    # Fan-out / fan-in
    PARALLEL_STARTED = "parallel_started"
    PARALLEL_COMPLETED = "parallel_completed"

    # Tool lifecycle
    TOOL_CALL_STARTED = "tool_call_started"
    TOOL_CALL_COMPLETED = "tool_call_completed"

    # Memory checkpoints
    MEMORY_LOADED = "memory_loaded"
    MEMORY_SAVED = "memory_saved"

    CUSTOM = "custom"


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts named progress events."""

    async def emit(self, event_name: str, payload: Any = None) -> None: ...


@dataclass
class AgentEvent:
    """An event as recorded by a sink."""

    type: str
    data: Any = None
    seq: int = 0
    run_id: str | None = None
    node_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": str(self.type),
            "seq": self.seq,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


def _event_location(payload: Any) -> tuple[str | None, str | None]:
    if isinstance(payload, dict):
        return payload.get("run_id"), payload.get("node_id")
    return None, None


# Type for event handlers
EventHandler = Callable[[AgentEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A handler plus the events it wants; None filters accept everything."""

    id: str
    handler: EventHandler
    event_types: frozenset[str] | None = None
    run_id: str | None = None
    node_id: str | None = None

    def accepts(self, event: AgentEvent) -> bool:
        if self.event_types is not None and event.type not in self.event_types:
            return False
        if self.run_id and event.run_id != self.run_id:
            return False
        return not (self.node_id and event.node_id != self.node_id)


class EventBus:
    """
    Pub/sub event bus with bounded history.

    Example:
        bus = EventBus()

        async def on_message(event: AgentEvent):
            print(event.data["speech"])

        bus.subscribe(on_message, event_types=[EventType.MESSAGE])

        await bus.emit(EventType.MESSAGE, {"side": "正方", "speech": "..."})
    """

    def __init__(self, max_history: int = 1000):
        self.max_history = max_history
        self._history: deque[AgentEvent] = deque(maxlen=max_history)
        self._subscriptions: dict[str, Subscription] = {}
        self._sub_ids = itertools.count(1)
        self._seq = itertools.count(1)

    def subscribe(
        self,
        handler: EventHandler,
        event_types: list[str] | None = None,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Register `handler` for matching events and return the subscription id.

        Args:
            handler: Coroutine called with each matching AgentEvent
            event_types: Event names to receive (None for all)
            filter_run: Only events whose payload names this run_id
            filter_node: Only events whose payload names this node_id
        """
        sub_id = f"sub_{next(self._sub_ids)}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            handler=handler,
            event_types=frozenset(event_types) if event_types is not None else None,
            run_id=filter_run,
            node_id=filter_node,
        )
        logger.debug(f"📡 {sub_id} listening for {event_types or 'all events'}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription; False when the id is unknown."""
        return self._subscriptions.pop(subscription_id, None) is not None

    async def emit(self, event_name: str, payload: Any = None) -> None:
        run_id, node_id = _event_location(payload)
        await self.publish(
            AgentEvent(type=event_name, data=payload, run_id=run_id, node_id=node_id)
        )

    async def publish(self, event: AgentEvent) -> None:
        """Number and record `event`, then hand it to each matching subscriber in turn."""
        event.seq = next(self._seq)
        self._history.append(event)

        for subscription in list(self._subscriptions.values()):
            if not subscription.accepts(event):
                continue
            try:
                await subscription.handler(event)
            except Exception as e:
                logger.error(f"❌ Subscriber {subscription.id} failed on '{event.type}': {e}")

    def get_history(
        self,
        event_type: str | None = None,
        run_id: str | None = None,
        limit: int | None = None,
    ) -> list[AgentEvent]:
        """
        Recorded events in emission order, optionally filtered.

        Args:
            event_type: Only events with this name
            run_id: Only events from this run
            limit: Keep only the most recent `limit` matches
        """
        events = [
            e
            for e in self._history
            if (not event_type or e.type == event_type) and (not run_id or e.run_id == run_id)
        ]
        return events[-limit:] if limit is not None else events

    def clear_history(self) -> None:
        self._history.clear()

    async def wait_for(
        self,
        event_type: str,
        run_id: str | None = None,
        timeout: float | None = None,
    ) -> AgentEvent | None:
        """Next event named `event_type` (optionally from `run_id`); None on timeout."""
        arrived: asyncio.Future[AgentEvent] = asyncio.get_running_loop().create_future()

        async def resolve(event: AgentEvent) -> None:
            if not arrived.done():
                arrived.set_result(event)

        sub_id = self.subscribe(resolve, event_types=[event_type], filter_run=run_id)
        try:
            return await asyncio.wait_for(arrived, timeout=timeout)
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(sub_id)


class QueueEventSink:
    """
    Buffers events in an asyncio.Queue for a push transport.

    The producer (a graph run) emits; the consumer iterates with
    ``async for event in sink`` until ``close()`` is called. Optionally only
    events named in `event_types` are queued, so a transport can subscribe to
    the presentation events and ignore engine lifecycle noise.
    """

    _CLOSED = object()

    def __init__(self, event_types: list[str] | None = None, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._event_types = set(event_types) if event_types is not None else None
        self._seq = itertools.count(1)
        self._closed = False

    async def emit(self, event_name: str, payload: Any = None) -> None:
        if self._closed:
            logger.debug(f"Dropping '{event_name}' emitted after sink was closed")
            return
        if self._event_types is not None and event_name not in self._event_types:
            return
        run_id, node_id = _event_location(payload)
        await self._queue.put(
            AgentEvent(
                type=event_name, data=payload, seq=next(self._seq), run_id=run_id, node_id=node_id
            )
        )

    def close(self) -> None:
        """Signal the consumer that no more events will arrive."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(self) -> AgentEvent | None:
        """Next event, or None once the sink is closed and drained."""
        item = await self._queue.get()
        if item is self._CLOSED:
            # Leave the marker for any other waiter
            self._queue.put_nowait(self._CLOSED)
            return None
        return item

    async def __aiter__(self) -> AsyncIterator[AgentEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class FanOutSink:
    """Forwards every event to several sinks in order."""

    def __init__(self, *sinks: EventSink):
        self.sinks = [s for s in sinks if s is not None]

    async def emit(self, event_name: str, payload: Any = None) -> None:
        for sink in self.sinks:
            await sink.emit(event_name, payload)
