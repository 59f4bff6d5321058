"""MCP tool schema definitions for helixmem.

Each Tool() defines the name, description, and JSON Schema for one MCP tool.
Validators and handlers live in helixmem.mcp.handlers.
"""

from mcp.types import Tool

from helixmem.tools.schemas import (
    REFINEMENT_SCHEMA,
    SAVE_MEMORY_SCHEMA,
    SEARCH_MEMORY_SCHEMA,
    SELF_AUTHORING_SCHEMA,
    WHITEBOARD_SCHEMA,
)

TOOLS = [
    Tool(
        name="memory_save",
        description="Save a memory. Use 'journal' for short-term observations (fades after a week) "
        "or 'core' for permanent identity memories.",
        inputSchema=SAVE_MEMORY_SCHEMA,
    ),
    Tool(
        name="memory_search",
        description="Search your kept memories by literal substring. Returns a ledger with ids, "
        "dates, token estimates and constitutional flags.",
        inputSchema=SEARCH_MEMORY_SCHEMA,
    ),
    Tool(
        name="memory_refine",
        description="Memory refinement. Actions: search, consolidate (merge 2+ memories into one), "
        "update, delete, protect (make constitutional), complete (end the session with a summary). "
        "Constitutional memories can never be deleted or merged.",
        inputSchema=REFINEMENT_SCHEMA,
    ),
    Tool(
        name="agent_config",
        description="View or update your configuration. Actions: view, update. Fields: name, "
        "system_prompt, reflection_prompt, memory_reflection_prompt, refinement_prompt, "
        "refinement_threshold. Prompt changes pass a safety check before they are saved.",
        inputSchema=SELF_AUTHORING_SCHEMA,
    ),
    Tool(
        name="whiteboard",
        description="Manage shared whiteboards. Actions: create, update, get, list, delete, restore, "
        "list_deleted, set_active. Updates must send expected_revision from your last read; on a "
        "conflict, merge with the returned current_content and retry.",
        inputSchema=WHITEBOARD_SCHEMA,
    ),
]
