"""Storage, automation and clock ports plus the in-memory store."""

from cadence.store.memory import InMemoryTaskStore
from cadence.store.protocols import (
    AutomationDispatcher,
    Clock,
    LoggingDispatcher,
    SystemClock,
    TaskStore,
)

__all__ = [
    "AutomationDispatcher",
    "Clock",
    "InMemoryTaskStore",
    "LoggingDispatcher",
    "SystemClock",
    "TaskStore",
]
