"""MCP tool handlers, grouped by domain.

Each module exports VALIDATORS and HANDLERS dicts keyed by tool name.
"""

from helixmem.mcp.handlers.memory import HANDLERS as MEMORY_HANDLERS
from helixmem.mcp.handlers.memory import VALIDATORS as MEMORY_VALIDATORS
from helixmem.mcp.handlers.refinement import HANDLERS as REFINEMENT_HANDLERS
from helixmem.mcp.handlers.refinement import VALIDATORS as REFINEMENT_VALIDATORS
from helixmem.mcp.handlers.self_authoring import HANDLERS as SELF_AUTHORING_HANDLERS
from helixmem.mcp.handlers.self_authoring import VALIDATORS as SELF_AUTHORING_VALIDATORS
from helixmem.mcp.handlers.whiteboard import HANDLERS as WHITEBOARD_HANDLERS
from helixmem.mcp.handlers.whiteboard import VALIDATORS as WHITEBOARD_VALIDATORS

HANDLERS = {
    **MEMORY_HANDLERS,
    **REFINEMENT_HANDLERS,
    **SELF_AUTHORING_HANDLERS,
    **WHITEBOARD_HANDLERS,
}

VALIDATORS = {
    **MEMORY_VALIDATORS,
    **REFINEMENT_VALIDATORS,
    **SELF_AUTHORING_VALIDATORS,
    **WHITEBOARD_VALIDATORS,
}

__all__ = ["HANDLERS", "VALIDATORS"]
