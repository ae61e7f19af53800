"""
Lightweight event bus for decoupled funnel change notifications.

Follows publisher-subscriber pattern so the validation summary (and any
UI layer) can react to graph edits without the editing layer knowing them.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Supports both sync and async handlers
- Non-blocking (async handlers scheduled via create_task)
- Singleton for global access, plus private instances for tests
- Type-safe events via msgspec

Architecture:
    FunnelGraph -> EventBus -> [ValidationMonitor, Logger, UI panels]

Usage:
    from infrastructure.event_bus import get_event_bus, FunnelEvent, EventType
    import time

    event_bus = get_event_bus()
    event_bus.publish(FunnelEvent(
        type=EventType.EDGE_CREATED,
        payload={"edge_id": "e-node-1-node-2", "source": "node-1", "target": "node-2"},
        timestamp=time.time(),
        source="funnel_graph",
    ))

    def on_edge_created(event: FunnelEvent):
        print(event.payload["edge_id"])

    event_bus.subscribe(EventType.EDGE_CREATED, on_edge_created)
"""
from typing import Callable, List, Dict, Any, Optional, Set
from enum import Enum
import msgspec
import asyncio
from collections import defaultdict
import logging


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events published by the editing layer."""
    NODE_CREATED = "node_created"
    NODE_DELETED = "node_deleted"
    EDGE_CREATED = "edge_created"
    EDGE_DELETED = "edge_deleted"
    CONNECTION_REJECTED = "connection_rejected"
    FUNNEL_LOADED = "funnel_loaded"
    FUNNEL_RESET = "funnel_reset"
    VALIDATION_CHANGED = "validation_changed"


# Events after which the structural report may differ
GRAPH_CHANGE_EVENTS = (
    EventType.NODE_CREATED,
    EventType.NODE_DELETED,
    EventType.EDGE_CREATED,
    EventType.EDGE_DELETED,
    EventType.FUNNEL_LOADED,
    EventType.FUNNEL_RESET,
)


class FunnelEvent(msgspec.Struct, kw_only=True):
    """
    Event emitted when the funnel changes.

    Attributes:
        type: Type of event (NODE_CREATED, EDGE_CREATED, etc.)
        payload: Event-specific data (node_id, edge_id, error, ...)
        timestamp: Unix timestamp when event occurred
        source: Publisher name ("funnel_graph", "validation_monitor", ...)
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


class EventBus:
    """
    Event bus for funnel change notifications.

    Thread Safety:
        NOT thread-safe. Use external locking if needed for concurrent access.

    Performance:
        - O(1) event publishing
        - O(n) notification per event type (where n = subscriber count)
        - Non-blocking for async handlers (fire-and-forget)
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._async_subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        # Strong references so scheduled handler tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: Callable[[FunnelEvent], None]):
        """Subscribe a synchronous handler. Subscribing twice is a no-op."""
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed sync handler to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: Callable[[FunnelEvent], Any]):
        """Subscribe a coroutine handler, scheduled on the running loop."""
        if handler not in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].append(handler)
            logger.debug(f"Subscribed async handler to {event_type.value}")

    def publish(self, event: FunnelEvent):
        """
        Publish an event to all subscribers.

        Note:
            - Sync handlers run immediately (blocking)
            - Async handlers are scheduled and run in the background
            - Exceptions in handlers are logged but don't propagate
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in sync handler for {event.type.value}: {e}",
                    exc_info=True
                )

        for handler in list(self._async_subscribers[event.type]):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"Cannot schedule async handler for {event.type.value}: "
                    "no event loop running"
                )
                continue
            task = loop.create_task(handler(event))
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Error in async handler: {error}",
                exc_info=(type(error), error, error.__traceback__)
            )

    @property
    def pending_task_count(self) -> int:
        """Number of async handler tasks still running."""
        return len(self._tasks)

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """Remove a handler (must be the same callable that was subscribed)."""
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed sync handler from {event_type.value}")

        if handler in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed async handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None):
        """
        Clear all subscribers for an event type (or all types).

        Warning:
            This is primarily for testing.
        """
        if event_type is None:
            self._subscribers.clear()
            self._async_subscribers.clear()
            logger.info("Cleared all event subscribers")
        else:
            self._subscribers[event_type].clear()
            self._async_subscribers[event_type].clear()
            logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """Count sync + async subscribers for one type (None = all types)."""
        if event_type is None:
            total = sum(len(handlers) for handlers in self._subscribers.values())
            total += sum(len(handlers) for handlers in self._async_subscribers.values())
            return total
        return (
            len(self._subscribers[event_type]) +
            len(self._async_subscribers[event_type])
        )


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus, creating it on first use."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
        logger.debug("Created global event bus")
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global event bus (testing)."""
    global _event_bus
    _event_bus = None


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def publish_event(
    event_type: EventType,
    payload: Optional[Dict[str, Any]] = None,
    source: str = "unknown",
    bus: Optional[EventBus] = None,
) -> FunnelEvent:
    """
    Build and publish a FunnelEvent stamped with the current time.

    Args:
        event_type: Type of event
        payload: Event-specific data
        source: Source of the event
        bus: Target bus (defaults to the global bus)

    Returns:
        The published event
    """
    import time
    event = FunnelEvent(
        type=event_type,
        payload=payload or {},
        timestamp=time.time(),
        source=source,
    )
    (bus or get_event_bus()).publish(event)
    return event
