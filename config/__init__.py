"""Configuration management for livepatch."""

from .schema import LivepatchSettings

__all__ = ["LivepatchSettings"]
