"""Directive execution: per-workspace queues and the executor."""

from .cursor import StreamCursor
from .executor import DirectiveExecutor, ExecutionResult
from .queue import QueueRegistry, WorkspaceQueue

__all__ = [
    "DirectiveExecutor",
    "ExecutionResult",
    "QueueRegistry",
    "StreamCursor",
    "WorkspaceQueue",
]
