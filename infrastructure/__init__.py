"""
FUNNEL INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML configuration and logging setup
- event_bus: Publisher-subscriber bus for funnel change events
- validation_monitor: Live structural report driven by the event bus
"""

from infrastructure.config import FunnelConfig, load_config, configure_logging
from infrastructure.event_bus import (
    EventBus,
    EventType,
    FunnelEvent,
    get_event_bus,
    publish_event,
)

__all__ = [
    "FunnelConfig",
    "load_config",
    "configure_logging",
    "EventBus",
    "EventType",
    "FunnelEvent",
    "get_event_bus",
    "publish_event",
]
