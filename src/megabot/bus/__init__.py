"""Orchestration event bus."""

from megabot.bus.bus import EventBus, EventFilter
from megabot.bus.events import Event, EventLevel, EventType

__all__ = ["Event", "EventBus", "EventFilter", "EventLevel", "EventType"]
