"""Persistent stores used across runs."""

from .build_cache import BuildCache

__all__ = ["BuildCache"]
