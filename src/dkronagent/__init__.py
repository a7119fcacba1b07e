"""dkronagent package bootstrap.

This module exposes the build-time version constant. Other modules (the
default configuration in particular) receive it explicitly rather than looking
it up at runtime.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
