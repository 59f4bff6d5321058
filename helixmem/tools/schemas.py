"""JSON Schemas for the agent-callable tools.

Shared by the refinement session runner (offered to the model as tool
definitions) and the MCP server (published as tool input schemas).
"""

from helixmem.tools.refinement import RefinementTool
from helixmem.tools.self_authoring import FIELDS as SELF_AUTHORING_FIELDS
from helixmem.tools.self_authoring import SelfAuthoringTool
from helixmem.tools.whiteboard import WhiteboardTool

SAVE_MEMORY_SCHEMA = {
    "type": "object",
    "properties": {
        "content": {
            "type": "string",
            "description": "The memory to save (keep it concise)",
        },
        "memory_type": {
            "type": "string",
            "enum": ["journal", "core"],
            "description": "'journal' for short-term observations (fades after a week) "
            "or 'core' for permanent identity memories",
        },
    },
    "required": ["content", "memory_type"],
}

SEARCH_MEMORY_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "Text to look for (literal substring)"},
        "memory_type": {
            "type": "string",
            "enum": ["journal", "core"],
            "description": "Restrict to one memory type",
        },
        "limit": {
            "type": "integer",
            "description": "Maximum results (default: 50)",
            "default": 50,
            "minimum": 1,
            "maximum": 200,
        },
    },
    "required": ["query"],
}

REFINEMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "action": {
            "type": "string",
            "enum": list(RefinementTool.ACTIONS),
            "description": "search, consolidate, update, delete, protect, or complete",
        },
        "query": {"type": "string", "description": "Search query (for search)"},
        "ids": {
            "type": ["string", "array"],
            "items": {"type": ["string", "integer"]},
            "description": "Memory IDs to merge, list or comma separated (for consolidate)",
        },
        "id": {
            "type": ["string", "integer"],
            "description": "Single memory ID (for update, delete, protect)",
        },
        "content": {"type": "string", "description": "New content (for consolidate, update)"},
        "summary": {"type": "string", "description": "Refinement summary (for complete)"},
    },
    "required": ["action"],
}

SELF_AUTHORING_SCHEMA = {
    "type": "object",
    "properties": {
        "action": {
            "type": "string",
            "enum": list(SelfAuthoringTool.ACTIONS),
            "description": "view or update",
        },
        "field": {
            "type": "string",
            "enum": list(SELF_AUTHORING_FIELDS),
            "description": ", ".join(SELF_AUTHORING_FIELDS),
        },
        "value": {
            "type": ["string", "number"],
            "description": "New value (required for update)",
        },
    },
    "required": ["action", "field"],
}

WHITEBOARD_SCHEMA = {
    "type": "object",
    "properties": {
        "action": {
            "type": "string",
            "enum": list(WhiteboardTool.ACTIONS),
            "description": "Action: " + ", ".join(WhiteboardTool.ACTIONS),
        },
        "board_id": {
            "type": ["string", "integer"],
            "description": "Board ID or name (for: update, get, delete, restore, set_active)",
        },
        "name": {
            "type": "string",
            "description": "Board name (required for create, optional for update)",
        },
        "summary": {
            "type": "string",
            "description": "Board summary, max 250 chars (required for create, optional for update)",
        },
        "content": {
            "type": "string",
            "description": "Markdown content. Update: omit to keep, empty string to clear.",
        },
        "expected_revision": {
            "type": ["integer", "string"],
            "description": "Revision you last read (required for update)",
        },
    },
    "required": ["action"],
}
