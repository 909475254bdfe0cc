"""Streaming directive pipeline and checkpoint engine."""
