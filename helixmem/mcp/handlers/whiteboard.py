"""Handler for the shared whiteboard tool."""

import json
from typing import Any, Dict

from helixmem.mcp.sanitize import pick_present, sanitize_ref, sanitize_string, validate_enum
from helixmem.mcp.session import MCPSession
from helixmem.tools.whiteboard import WhiteboardTool
from helixmem.whiteboards import MAX_CONTENT_LENGTH, MAX_NAME_LENGTH, MAX_SUMMARY_LENGTH


def validate_whiteboard(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["action"] = validate_enum(
        arguments.get("action"), "action", list(WhiteboardTool.ACTIONS), required=True
    )
    sanitized["board_id"] = sanitize_ref(arguments.get("board_id"), "board_id")
    sanitized["name"] = sanitize_string(
        arguments.get("name"), "name", MAX_NAME_LENGTH, required=False
    )
    sanitized["summary"] = sanitize_string(
        arguments.get("summary"), "summary", MAX_SUMMARY_LENGTH, required=False
    )
    sanitized["content"] = sanitize_string(
        arguments.get("content"), "content", MAX_CONTENT_LENGTH, required=False
    )
    sanitized["expected_revision"] = sanitize_ref(
        arguments.get("expected_revision"), "expected_revision"
    )
    return pick_present(arguments, sanitized)


def handle_whiteboard(args: Dict[str, Any], session: MCPSession) -> str:
    tool = session.helix.whiteboard_tool(session.context)
    return json.dumps(tool.execute(**args), indent=2, default=str)


HANDLERS = {
    "whiteboard": handle_whiteboard,
}

VALIDATORS = {
    "whiteboard": validate_whiteboard,
}
