"""CLI command modules for helixmem.

Each module contains related command handlers used by __main__.py.
"""

from helixmem.cli.commands.agents import cmd_agent
from helixmem.cli.commands.jobs import cmd_consolidate, cmd_reflect, cmd_refine
from helixmem.cli.commands.memory import cmd_memory
from helixmem.cli.commands.whiteboard import cmd_whiteboard

__all__ = [
    "cmd_agent",
    "cmd_consolidate",
    "cmd_memory",
    "cmd_reflect",
    "cmd_refine",
    "cmd_whiteboard",
]
