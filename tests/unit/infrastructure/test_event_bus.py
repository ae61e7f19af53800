"""
Tests for the funnel event bus (infrastructure/event_bus.py).
"""
import asyncio
import logging

from infrastructure.event_bus import (
    EventBus,
    EventType,
    FunnelEvent,
    get_event_bus,
    publish_event,
    reset_event_bus,
)


def make_event(event_type=EventType.NODE_CREATED, **payload):
    return FunnelEvent(type=event_type, payload=payload, timestamp=0.0, source="test")


def test_sync_handler_receives_event(event_bus):
    received = []
    event_bus.subscribe(EventType.NODE_CREATED, received.append)

    event = make_event(node_id="node-1")
    event_bus.publish(event)

    assert received == [event]


def test_handlers_only_see_their_type(event_bus):
    received = []
    event_bus.subscribe(EventType.EDGE_CREATED, received.append)
    event_bus.publish(make_event(EventType.NODE_CREATED))
    assert received == []


def test_subscribe_twice_is_noop(event_bus):
    handler = lambda event: None
    event_bus.subscribe(EventType.NODE_DELETED, handler)
    event_bus.subscribe(EventType.NODE_DELETED, handler)
    assert event_bus.subscriber_count(EventType.NODE_DELETED) == 1


def test_unsubscribe(event_bus):
    received = []
    event_bus.subscribe(EventType.NODE_CREATED, received.append)
    event_bus.unsubscribe(EventType.NODE_CREATED, received.append)
    event_bus.publish(make_event())
    assert received == []
    assert event_bus.subscriber_count() == 0


def test_failing_handler_is_logged_and_isolated(event_bus, caplog):
    received = []

    def broken(event):
        raise RuntimeError("boom")

    event_bus.subscribe(EventType.NODE_CREATED, broken)
    event_bus.subscribe(EventType.NODE_CREATED, received.append)

    with caplog.at_level(logging.ERROR, logger="infrastructure.event_bus"):
        event_bus.publish(make_event())

    assert len(received) == 1
    assert "boom" in caplog.text


def test_async_handler_runs_on_loop(event_bus):
    received = []

    async def handler(event):
        received.append(event)

    async def scenario():
        event_bus.subscribe_async(EventType.FUNNEL_LOADED, handler)
        event_bus.publish(make_event(EventType.FUNNEL_LOADED))
        await asyncio.sleep(0)

    asyncio.run(scenario())
    assert len(received) == 1


def test_failing_async_handler_is_logged_and_released(event_bus, caplog):
    async def broken(event):
        raise RuntimeError("async boom")

    pending = []

    async def scenario():
        event_bus.subscribe_async(EventType.NODE_DELETED, broken)
        event_bus.publish(make_event(EventType.NODE_DELETED))
        pending.append(event_bus.pending_task_count)
        # one step runs the handler, the next runs its done-callback
        for _ in range(3):
            await asyncio.sleep(0)

    with caplog.at_level(logging.ERROR, logger="infrastructure.event_bus"):
        asyncio.run(scenario())

    assert pending == [1]
    assert event_bus.pending_task_count == 0
    assert "Error in async handler: async boom" in caplog.text


def test_async_handler_without_loop_is_skipped(event_bus, caplog):
    async def handler(event):
        raise AssertionError("should not run")

    event_bus.subscribe_async(EventType.FUNNEL_RESET, handler)
    with caplog.at_level(logging.WARNING, logger="infrastructure.event_bus"):
        event_bus.publish(make_event(EventType.FUNNEL_RESET))
    assert "no event loop running" in caplog.text


def test_clear_subscribers(event_bus):
    event_bus.subscribe(EventType.NODE_CREATED, lambda e: None)
    event_bus.subscribe(EventType.EDGE_CREATED, lambda e: None)

    event_bus.clear_subscribers(EventType.NODE_CREATED)
    assert event_bus.subscriber_count() == 1

    event_bus.clear_subscribers()
    assert event_bus.subscriber_count() == 0


def test_global_bus_singleton():
    bus = get_event_bus()
    assert get_event_bus() is bus
    reset_event_bus()
    assert get_event_bus() is not bus


def test_publish_event_stamps_and_returns(event_bus):
    received = []
    event_bus.subscribe(EventType.VALIDATION_CHANGED, received.append)

    event = publish_event(EventType.VALIDATION_CHANGED, {"is_valid": True}, source="unit", bus=event_bus)

    assert received == [event]
    assert event.source == "unit"
    assert event.timestamp > 0


def test_publish_event_defaults_to_global_bus():
    received = []
    get_event_bus().subscribe(EventType.NODE_CREATED, received.append)
    publish_event(EventType.NODE_CREATED)
    assert received[0].payload == {}
