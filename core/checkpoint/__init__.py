"""Workspace checkpoints: snapshot, restore, revert and pre-revert restore."""

from .manager import Checkpoint, CheckpointManager, content_hash

__all__ = ["Checkpoint", "CheckpointManager", "content_hash"]
