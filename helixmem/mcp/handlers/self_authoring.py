"""Handler for the agent self-authoring tool."""

import json
from typing import Any, Dict

from helixmem.mcp.sanitize import pick_present, validate_enum
from helixmem.mcp.session import MCPSession
from helixmem.tools.self_authoring import FIELDS, PROMPT_LIMITS, SelfAuthoringTool
from helixmem.validation import coerce_float, sanitize_string

MAX_VALUE_LENGTH = max(PROMPT_LIMITS.values())


def validate_agent_config(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["action"] = validate_enum(
        arguments.get("action"), "action", list(SelfAuthoringTool.ACTIONS), required=True
    )
    sanitized["field"] = validate_enum(arguments.get("field"), "field", list(FIELDS), required=True)

    value = arguments.get("value")
    if value is None:
        sanitized["value"] = None
    elif sanitized["field"] == "refinement_threshold":
        sanitized["value"] = coerce_float(value, "value", 0.0, 1.0)
    else:
        sanitized["value"] = sanitize_string(value, "value", MAX_VALUE_LENGTH, required=False)
    return pick_present(arguments, sanitized)


def handle_agent_config(args: Dict[str, Any], session: MCPSession) -> str:
    tool = session.helix.self_authoring_tool(session.context)
    return json.dumps(tool.execute(**args), indent=2, default=str)


HANDLERS = {
    "agent_config": handle_agent_config,
}

VALIDATORS = {
    "agent_config": validate_agent_config,
}
