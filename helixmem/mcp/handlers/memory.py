"""Handlers for direct memory tools: save, search."""

import json
from typing import Any, Dict

from helixmem.mcp.sanitize import sanitize_string, validate_enum
from helixmem.mcp.session import MCPSession
from helixmem.memory_store import MAX_SEARCH_QUERY_LENGTH
from helixmem.types import MAX_MEMORY_LENGTH, VALID_MEMORY_TYPES
from helixmem.validation import sanitize_number

MEMORY_TYPES = sorted(VALID_MEMORY_TYPES)

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_memory_save(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["content"] = sanitize_string(
        arguments.get("content"), "content", MAX_MEMORY_LENGTH, required=True
    )
    sanitized["memory_type"] = validate_enum(
        arguments.get("memory_type"), "memory_type", MEMORY_TYPES, required=True
    )
    return sanitized


def validate_memory_search(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["query"] = sanitize_string(
        arguments.get("query"), "query", MAX_SEARCH_QUERY_LENGTH
    )
    sanitized["memory_type"] = validate_enum(arguments.get("memory_type"), "memory_type", MEMORY_TYPES)
    sanitized["limit"] = int(sanitize_number(arguments.get("limit"), "limit", 1, 200, 50))
    return sanitized


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_memory_save(args: Dict[str, Any], session: MCPSession) -> str:
    tool = session.helix.save_memory_tool(session.context)
    return json.dumps(tool.execute(**args), indent=2, default=str)


def handle_memory_search(args: Dict[str, Any], session: MCPSession) -> str:
    tool = session.helix.search_memory_tool(session.context)
    return json.dumps(tool.execute(**args), indent=2, default=str)


# ---------------------------------------------------------------------------
# Registry dicts
# ---------------------------------------------------------------------------

HANDLERS = {
    "memory_save": handle_memory_save,
    "memory_search": handle_memory_search,
}

VALIDATORS = {
    "memory_save": validate_memory_save,
    "memory_search": validate_memory_search,
}
