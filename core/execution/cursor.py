"""Per-turn stream state."""

from __future__ import annotations

from dataclasses import dataclass, field

from core.directives.scanner import StreamScanner
from core.directives.types import CorrelationMarker


@dataclass
class StreamCursor:
    """Everything one turn remembers about its stream; never persisted."""

    workspace_id: str
    message_id: str
    scanner: StreamScanner = field(default_factory=StreamScanner)
    pending_marker: CorrelationMarker | None = None
    executed: set[str] = field(default_factory=set)
    aborted: bool = False
    abort_reason: str | None = None

    @property
    def buffer(self) -> str:
        return self.scanner.buffered

    @property
    def offset(self) -> int:
        return self.scanner.offset

    def has_executed(self, correlation_id: str) -> bool:
        return correlation_id in self.executed

    def mark_executed(self, correlation_id: str) -> None:
        self.executed.add(correlation_id)

    def abort(self, reason: str) -> None:
        if not self.aborted:
            self.aborted = True
            self.abort_reason = reason
