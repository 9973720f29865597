"""
Internal lifecycle event bus.

Exports the event model, the payload redactor and the synchronous bus used by
the module manager to announce lifecycle transitions.
"""

from modhost.core.events.models import BaseEvent, EventSeverity, SourceSubsystem, redact
from modhost.core.events.bus import EventBus, EventBusConfig

__all__ = [
    "redact",
    "BaseEvent",
    "EventSeverity",
    "SourceSubsystem",
    "EventBus",
    "EventBusConfig",
]
