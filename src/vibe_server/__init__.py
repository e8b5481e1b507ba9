"""Vibe Room Server.

A shared-room service where every connected listener hears the same
generative ambient piece, and anyone can nudge it by submitting a short
free-text prompt. Prompts are moderated and interpreted by an LLM into
bounded parameter changes that are applied to one persisted room state and
broadcast to every listener.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version("vibe_server")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
