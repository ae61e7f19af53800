"""
Pytest configuration and shared fixtures for the funnel builder test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the global event bus before each test to ensure isolation."""
    from infrastructure.event_bus import reset_event_bus

    reset_event_bus()
    yield
    reset_event_bus()


@pytest.fixture
def event_bus():
    """Provide a private EventBus instance."""
    from infrastructure.event_bus import EventBus
    return EventBus()


@pytest.fixture
def fresh_graph(event_bus):
    """Provide an empty FunnelGraph wired to a private bus."""
    from core.funnel_graph import FunnelGraph
    return FunnelGraph(event_bus=event_bus)


@pytest.fixture
def complete_graph(fresh_graph):
    """Provide a graph holding the canonical complete funnel."""
    from tests.factories import complete_funnel

    nodes, edges = complete_funnel()
    for node in nodes:
        fresh_graph.add_node(node)
    for e in edges:
        fresh_graph.add_edge(e)
    return fresh_graph


@pytest.fixture
def recorded_events(event_bus):
    """Collect every event published on the private bus."""
    from infrastructure.event_bus import EventType

    events = []
    for event_type in EventType:
        event_bus.subscribe(event_type, events.append)
    return events
