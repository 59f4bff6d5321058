"""
helixmem MCP Server - agent memory tools for MCP clients.

Exposes the agent-facing tools (memory save/search, refinement,
self-authoring, whiteboards) for a single agent over the Model Context
Protocol. One server process serves one agent, optionally bound to a
conversation.

Security Features:
- JSON Schema validation followed by per-tool sanitization
- Structured tool errors for agent mistakes, generic messages for internal ones
- Structured logging for debugging

Usage:
    helixmem mcp --agent 3 --chat 12  # Start MCP server (stdio transport)
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from helixmem.core import Helix
from helixmem.mcp.handlers import HANDLERS, VALIDATORS
from helixmem.mcp.session import MCPSession
from helixmem.mcp.tool_definitions import TOOLS
from helixmem.models.auto import auto_configure_model
from helixmem.protocols import HelixError, NotFoundError
from helixmem.types import HumanActor

logger = logging.getLogger(__name__)

# Initialize MCP server
mcp = Server("helixmem")

_SCHEMA_VALIDATORS = {tool.name: Draft7Validator(tool.inputSchema) for tool in TOOLS}

# Session binding for this process
_session_config: Dict[str, Any] = {
    "agent_id": None,
    "chat_id": None,
    "operator_user_id": None,
    "db_path": None,
}


def set_session(
    agent_id: Optional[int],
    chat_id: Optional[int] = None,
    operator_user_id: Optional[int] = None,
    db_path=None,
) -> None:
    """Bind the MCP session to an agent (and optionally a chat)."""
    _session_config.update(
        agent_id=agent_id,
        chat_id=chat_id,
        operator_user_id=operator_user_id,
        db_path=db_path,
    )
    # Clear cached session so next get_session uses the new binding
    if hasattr(get_session, "_instance"):
        get_session._instance.helix.close(wait=False)  # type: ignore[attr-defined]
        delattr(get_session, "_instance")


def get_session() -> MCPSession:
    """Get or create the MCP session."""
    if not hasattr(get_session, "_instance"):
        helix = Helix(_session_config["db_path"], model=auto_configure_model())
        actor = None
        if _session_config["operator_user_id"] is not None:
            user = helix.storage.get_user(_session_config["operator_user_id"])
            if user is None:
                raise NotFoundError(f"User {_session_config['operator_user_id']} not found")
            actor = HumanActor(user_id=user.id, name=user.name)
        context = helix.tool_context(_session_config["agent_id"], _session_config["chat_id"], actor)
        get_session._instance = MCPSession(helix=helix, context=context)  # type: ignore[attr-defined]
    return get_session._instance  # type: ignore[attr-defined]


# =============================================================================
# INPUT VALIDATION & SANITIZATION
# =============================================================================


def validate_tool_input(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and sanitize MCP tool inputs."""
    try:
        if not isinstance(name, str):
            raise ValueError(f"tool name must be a string, got {type(name).__name__}")
        if not name:
            raise ValueError("tool name must not be empty")
        if not isinstance(arguments, dict):
            raise ValueError(f"arguments must be an object, got {type(arguments).__name__}")

        validator = VALIDATORS.get(name)
        if validator is None:
            raise ValueError(f"Unknown tool: {name}")

        schema_validator = _SCHEMA_VALIDATORS.get(name)
        if schema_validator is not None:
            errors = sorted(schema_validator.iter_errors(arguments), key=lambda err: list(err.path))
            if errors:
                first = errors[0]
                path = ".".join(str(part) for part in first.path) or "(root)"
                raise ValueError(f"Schema validation failed at {path}: {first.message}")

        return validator(arguments)

    except (ValueError, TypeError) as e:
        logger.warning(f"Input validation failed for tool {name}: {e}")
        raise ValueError(f"Invalid input: {str(e)}")


def handle_tool_error(e: Exception, tool_name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Handle tool errors securely."""
    if isinstance(e, ValueError):
        # Input validation or business logic error
        logger.warning(f"Invalid input for tool {tool_name}: {e}")
        message = str(e)
        if not message.startswith("Invalid input"):
            message = f"Invalid input: {message}"
        return [TextContent(type="text", text=message)]

    elif isinstance(e, NotFoundError):
        logger.warning(f"Resource not found for tool {tool_name}: {e}")
        return [TextContent(type="text", text=str(e) or "Resource not found")]

    elif isinstance(e, HelixError):
        logger.warning(f"Tool {tool_name} failed: {e}")
        return [TextContent(type="text", text=str(e))]

    else:
        # Unknown error - log full details but return generic message
        argument_keys = list(arguments.keys()) if isinstance(arguments, dict) else []
        logger.error(
            f"Internal error in tool {tool_name}",
            extra={
                "tool_name": tool_name,
                "arguments_keys": argument_keys,
                "error_type": type(e).__name__,
                "error_message": str(e),
            },
            exc_info=True,
        )
        return [TextContent(type="text", text="Internal server error")]


# =============================================================================
# MCP PROTOCOL HANDLERS
# =============================================================================


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List available agent tools."""
    return list(TOOLS)


@mcp.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls with validation and error handling."""
    try:
        sanitized_args = validate_tool_input(name, arguments)
        session = get_session()

        handler = HANDLERS.get(name)
        if handler is not None:
            result = handler(sanitized_args, session)
            return [TextContent(type="text", text=result)]

        # Should not reach here due to validation, but handle gracefully
        logger.error(f"Unexpected tool name after validation: {name}")
        return [TextContent(type="text", text=f"Tool '{name}' is not available")]

    except Exception as e:
        return handle_tool_error(e, name, arguments)


async def run_server():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(
            read_stream,
            write_stream,
            mcp.create_initialization_options(),
        )


def main(
    agent_id: Optional[int],
    chat_id: Optional[int] = None,
    operator_user_id: Optional[int] = None,
    db_path=None,
):
    """Entry point for MCP server."""
    set_session(agent_id, chat_id, operator_user_id, db_path)
    try:
        asyncio.run(run_server())
    finally:
        if hasattr(get_session, "_instance"):
            get_session._instance.helix.close()  # type: ignore[attr-defined]
