"""Utility modules for the process runner API."""

from .logging import setup_logging

__all__ = [
    "setup_logging",
]
