"""
helixmem - Memory and refinement engine for long-lived chat agents.

Agents accumulate journal and core memories from conversations, curate
them through a tool protocol, and share whiteboards with their humans.
"""

from .core import Helix

try:
    from importlib.metadata import version

    __version__ = version("helixmem")
except Exception:
    __version__ = "0.0.0"

__all__ = ["Helix"]
