"""Runtime configuration schema for livepatch using Pydantic.

Nested config groups (storage, stream, checkpoint, events) plus the
process-wide log level. Every field has a default so an empty config
file is valid.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

# ============================================================================
# Storage
# ============================================================================


class StorageConfig(BaseModel):
    """Where the SQLite database lives."""

    db_path: str | None = Field(None, description="SQLite file (None = ~/.livepatch/livepatch.db)")


# ============================================================================
# Stream scanning
# ============================================================================


class StreamConfig(BaseModel):
    """Stream scanner limits and recognized fence tags."""

    max_buffer_chars: int = Field(262144, gt=0, description="Max retained partial block size")
    fence_languages: list[str] = Field(
        default_factory=lambda: ["json", "tool"],
        description="Fence info strings treated as structured directive blocks",
    )

    @field_validator("fence_languages")
    @classmethod
    def normalize_languages(cls, v: list[str]) -> list[str]:
        langs = [lang.strip().lower() for lang in v if lang and lang.strip()]
        if not langs:
            raise ValueError("fence_languages must name at least one fence tag")
        return langs


# ============================================================================
# Checkpoints
# ============================================================================


class CheckpointConfig(BaseModel):
    """Checkpoint capture and revert/restore behavior."""

    auto_create: bool = Field(True, description="Checkpoint before a turn's first directive")
    pre_revert_ttl_seconds: float = Field(300.0, gt=0, description="How long a pre-revert state can be restored")


# ============================================================================
# Events
# ============================================================================


class EventsConfig(BaseModel):
    """Event bus history and audit persistence."""

    persist_tool_events: bool = Field(True, description="Write tool-executed events to the audit table")
    history_limit: int = Field(1000, gt=0, description="In-memory events kept for SSE replay")


# ============================================================================
# Root
# ============================================================================


class LivepatchSettings(BaseModel):
    """Top-level runtime settings."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    log_level: str = Field("INFO", description="Root log level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level
