"""
Event bus and schemas for the smart home pipeline.

Producers publish canonical Events onto per-source topics; the rituals engine
consumes them and publishes RitualCompletion records.
"""

from backend.app.events.bus import EventBus, Subscription
from backend.app.events.schemas import Event, RitualCompletion
from backend.app.events.topics import Topics, source_topic

__all__ = [
    "EventBus",
    "Subscription",
    "Event",
    "RitualCompletion",
    "Topics",
    "source_topic",
]
