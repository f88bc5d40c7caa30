"""Observability module — structured event bus."""

from trustbond.observability.event_bus import (
    EventType,
    TrustEvent,
    TrustEventBus,
)

__all__ = [
    "EventType",
    "TrustEvent",
    "TrustEventBus",
]
