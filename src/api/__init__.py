"""API endpoints for the process runner API."""

from . import run, output, sessions, health

__all__ = ["run", "output", "sessions", "health"]
