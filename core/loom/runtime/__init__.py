"""Runtime event plumbing."""

from loom.runtime.event_bus import (
    AgentEvent,
    EventBus,
    EventSink,
    EventType,
    FanOutSink,
    QueueEventSink,
)

__all__ = ["AgentEvent", "EventBus", "EventSink", "EventType", "FanOutSink", "QueueEventSink"]
