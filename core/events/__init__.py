"""Typed event bus for store mutation notifications."""

from .bus import ALL_TOPICS, BusEvent, EventBus
from .topics import FILES_CHANGED, TOOL_EXECUTED, FilesChangedEvent, ToolExecutedEvent

__all__ = [
    "ALL_TOPICS",
    "BusEvent",
    "EventBus",
    "FILES_CHANGED",
    "TOOL_EXECUTED",
    "FilesChangedEvent",
    "ToolExecutedEvent",
]
