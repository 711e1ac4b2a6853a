"""Sandbox isolation for spawned executables.

- nsjail.py: NsjailConfig, builds the nsjail wrapper command line
"""

from .nsjail import NsjailConfig

__all__ = ["NsjailConfig"]
