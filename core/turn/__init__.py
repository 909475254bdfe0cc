"""Turn orchestration: stream in, directives out."""

from core.execution.cursor import StreamCursor

from .session import TurnDeps, TurnReport, TurnSession

__all__ = ["StreamCursor", "TurnDeps", "TurnReport", "TurnSession"]
