"""Tests for the event sinks: EventBus pub/sub and the queue sink used by SSE."""

import asyncio

import pytest

from loom.runtime.event_bus import AgentEvent, EventBus, EventType, FanOutSink, QueueEventSink


class TestEventBus:
    @pytest.mark.asyncio
    async def test_subscribers_receive_matching_events(self):
        bus = EventBus()
        received: list[AgentEvent] = []

        async def handler(event: AgentEvent) -> None:
            received.append(event)

        bus.subscribe(handler, event_types=[EventType.MESSAGE])
        await bus.emit(EventType.MESSAGE, {"speech": "hello"})
        await bus.emit(EventType.VERDICT, "ignored")

        assert len(received) == 1
        assert received[0].data == {"speech": "hello"}

    @pytest.mark.asyncio
    async def test_sequence_numbers_follow_emission_order(self):
        bus = EventBus()
        for i in range(5):
            await bus.emit("custom", i)

        history = bus.get_history()
        assert [e.data for e in history] == [0, 1, 2, 3, 4]
        assert [e.seq for e in history] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_run_and_node_filters(self):
        bus = EventBus()
        received: list[AgentEvent] = []

        async def handler(event: AgentEvent) -> None:
            received.append(event)

        bus.subscribe(handler, filter_run="run_a", filter_node="n1")
        await bus.emit(EventType.NODE_STARTED, {"run_id": "run_a", "node_id": "n1"})
        await bus.emit(EventType.NODE_STARTED, {"run_id": "run_a", "node_id": "n2"})
        await bus.emit(EventType.NODE_STARTED, {"run_id": "run_b", "node_id": "n1"})

        assert len(received) == 1
        assert received[0].run_id == "run_a"

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_delivery(self):
        bus = EventBus()
        received = []

        async def broken(event: AgentEvent) -> None:
            raise RuntimeError("handler bug")

        async def working(event: AgentEvent) -> None:
            received.append(event.type)

        bus.subscribe(broken)
        bus.subscribe(working)
        await bus.emit("custom")

        assert received == ["custom"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []

        async def handler(event: AgentEvent) -> None:
            received.append(event)

        sub_id = bus.subscribe(handler)
        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False
        await bus.emit("custom")
        assert received == []

    @pytest.mark.asyncio
    async def test_history_filters_and_limit(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.emit(EventType.MESSAGE if i % 2 else EventType.VERDICT, {"run_id": "r", "i": i})

        assert len(bus.get_history()) == 3
        assert [e.data["i"] for e in bus.get_history(event_type=EventType.VERDICT)] == [2, 4]
        assert len(bus.get_history(limit=1)) == 1

        bus.clear_history()
        assert bus.get_history() == []

    @pytest.mark.asyncio
    async def test_wait_for(self):
        bus = EventBus()

        async def later():
            await asyncio.sleep(0.01)
            await bus.emit(EventType.RUN_FINISHED, {"run_id": "r1"})

        task = asyncio.create_task(later())
        event = await bus.wait_for(EventType.RUN_FINISHED, timeout=1.0)
        await task

        assert event is not None
        assert event.run_id == "r1"

    @pytest.mark.asyncio
    async def test_wait_for_timeout(self):
        assert await EventBus().wait_for("never", timeout=0.01) is None

    def test_to_dict(self):
        event = AgentEvent(type=EventType.VERDICT, data="text", seq=3, run_id="r")
        d = event.to_dict()
        assert d["type"] == "verdict"
        assert d["seq"] == 3
        assert d["data"] == "text"


class TestQueueEventSink:
    @pytest.mark.asyncio
    async def test_iterates_until_closed(self):
        sink = QueueEventSink()
        await sink.emit("a", 1)
        await sink.emit("b", 2)
        sink.close()

        events = [e async for e in sink]
        assert [(e.type, e.data, e.seq) for e in events] == [("a", 1, 1), ("b", 2, 2)]

    @pytest.mark.asyncio
    async def test_filters_event_types(self):
        sink = QueueEventSink(event_types=[EventType.MESSAGE])
        await sink.emit(EventType.NODE_STARTED, {})
        await sink.emit(EventType.MESSAGE, {"speech": "hi"})
        sink.close()

        assert [e.type for e in [e async for e in sink]] == [EventType.MESSAGE]

    @pytest.mark.asyncio
    async def test_emit_after_close_is_dropped(self):
        sink = QueueEventSink()
        sink.close()
        await sink.emit("late")

        assert sink.closed
        assert await sink.get() is None
        # The close marker stays for other waiters
        assert await sink.get() is None

    @pytest.mark.asyncio
    async def test_consumer_waits_for_producer(self):
        sink = QueueEventSink()

        async def produce():
            for i in range(3):
                await asyncio.sleep(0.005)
                await sink.emit("tick", i)
            sink.close()

        task = asyncio.create_task(produce())
        received = [e.data async for e in sink]
        await task
        assert received == [0, 1, 2]


@pytest.mark.asyncio
async def test_fan_out_sink():
    bus = EventBus()
    queue = QueueEventSink()
    sink = FanOutSink(bus, None, queue)

    await sink.emit("custom", "x")
    queue.close()

    assert [e.data for e in bus.get_history()] == ["x"]
    assert [e.data async for e in queue] == ["x"]
