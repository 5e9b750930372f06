"""SQLite persistence for the dashboard."""

from .core import AsyncStore

__all__ = ["AsyncStore"]
