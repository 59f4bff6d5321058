"""Handler for the memory refinement tool."""

import json
from typing import Any, Dict

from helixmem.mcp.sanitize import (
    pick_present,
    sanitize_id_list,
    sanitize_ref,
    sanitize_string,
    validate_enum,
)
from helixmem.mcp.session import MCPSession
from helixmem.memory_store import MAX_SEARCH_QUERY_LENGTH
from helixmem.tools.refinement import MAX_SUMMARY_LENGTH, RefinementTool
from helixmem.types import MAX_MEMORY_LENGTH


def validate_memory_refine(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["action"] = validate_enum(
        arguments.get("action"), "action", list(RefinementTool.ACTIONS), required=True
    )
    sanitized["query"] = sanitize_string(
        arguments.get("query"), "query", MAX_SEARCH_QUERY_LENGTH, required=False
    )
    sanitized["ids"] = sanitize_id_list(arguments.get("ids"), "ids")
    sanitized["id"] = sanitize_ref(arguments.get("id"), "id")
    sanitized["content"] = sanitize_string(
        arguments.get("content"), "content", MAX_MEMORY_LENGTH, required=False
    )
    # Length is enforced by the tool so the agent sees a structured error
    sanitized["summary"] = sanitize_string(
        arguments.get("summary"), "summary", MAX_SUMMARY_LENGTH * 10, required=False
    )
    return pick_present(arguments, sanitized)


def handle_memory_refine(args: Dict[str, Any], session: MCPSession) -> str:
    result = session.refinement_tool.execute(**args)
    return json.dumps(result, indent=2, default=str)


HANDLERS = {
    "memory_refine": handle_memory_refine,
}

VALIDATORS = {
    "memory_refine": validate_memory_refine,
}
