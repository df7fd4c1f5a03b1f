"""Utility modules for CDRGraph workers"""

from .event_store import EventFilter, EventStore, InMemoryEventStore, InsertResult
from .log_config import configure_logging

__all__ = [
    "EventFilter",
    "EventStore",
    "InMemoryEventStore",
    "InsertResult",
    "configure_logging",
]
