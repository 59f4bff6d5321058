"""
helixmem CLI - operate agent memory from the command line.

Usage:
    helixmem agent create NAME (--account ID | --account-name NAME)
    helixmem agent list [--account ID] [--all] [--json]
    helixmem agent context ID
    helixmem mcp --agent ID [--chat ID] [--operator-user ID]
    helixmem reflect [--agent ID] [--json]
    helixmem consolidate (--chat ID --agent ID | --stale) [--json]
    helixmem refine [--agent ID] [--json]
    helixmem memory list|search|protect|discard|restore --agent ID ...
    helixmem whiteboard list|show --account ID ...
"""

import argparse
import logging
import sys

from helixmem.cli.commands import (
    cmd_agent,
    cmd_consolidate,
    cmd_memory,
    cmd_reflect,
    cmd_refine,
    cmd_whiteboard,
)
from helixmem.config import get_settings
from helixmem.core import Helix
from helixmem.logging_config import setup_helix_logging
from helixmem.models.auto import auto_configure_model
from helixmem.protocols import HelixError
from helixmem.triggers import InlineJobQueue

logger = logging.getLogger(__name__)

# Commands that need a generation backend
_MODEL_COMMANDS = {"reflect", "consolidate", "refine"}


def cmd_mcp(args):
    """Start MCP server."""
    from helixmem.mcp.server import main as mcp_main

    mcp_main(
        agent_id=args.agent,
        chat_id=args.chat,
        operator_user_id=args.operator_user,
        db_path=args.db,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="helixmem",
        description="Memory and refinement engine for conversational agents",
    )
    parser.add_argument("--db", help="SQLite database path (default: <data_dir>/helixmem.db)")
    parser.add_argument("--log-level", default=None, help="Log level (default: HELIXMEM_LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # agent
    p_agent = subparsers.add_parser("agent", help="Manage agents")
    agent_sub = p_agent.add_subparsers(dest="agent_action", required=True)
    agent_create = agent_sub.add_parser("create", help="Create an agent")
    agent_create.add_argument("name", help="Agent name")
    owner = agent_create.add_mutually_exclusive_group(required=True)
    owner.add_argument("--account", type=int, help="Existing account ID")
    owner.add_argument("--account-name", help="Create a new account with this name")
    agent_list = agent_sub.add_parser("list", help="List agents")
    agent_list.add_argument("--account", type=int, help="Only agents in this account")
    agent_list.add_argument("--all", action="store_true", help="Include inactive agents")
    agent_list.add_argument("--json", "-j", action="store_true")
    agent_context = agent_sub.add_parser("context", help="Show an agent's memory context")
    agent_context.add_argument("id", type=int, help="Agent ID")

    # mcp
    p_mcp = subparsers.add_parser("mcp", help="Start MCP server (stdio transport)")
    p_mcp.add_argument("--agent", "-a", type=int, required=True, help="Agent ID")
    p_mcp.add_argument("--chat", "-c", type=int, help="Conversation ID")
    p_mcp.add_argument("--operator-user", type=int, help="Act as this user instead of the agent")

    # reflect
    p_reflect = subparsers.add_parser("reflect", help="Promote journal entries to core memories")
    p_reflect.add_argument("--agent", "-a", type=int, help="Agent ID (default: all agents)")
    p_reflect.add_argument("--json", "-j", action="store_true")

    # consolidate
    p_consolidate = subparsers.add_parser("consolidate", help="Extract memories from conversations")
    p_consolidate.add_argument("--chat", "-c", type=int, help="Conversation ID")
    p_consolidate.add_argument("--agent", "-a", type=int, help="Agent ID")
    p_consolidate.add_argument(
        "--stale", action="store_true", help="Consolidate every idle conversation"
    )
    p_consolidate.add_argument("--json", "-j", action="store_true")

    # refine
    p_refine = subparsers.add_parser("refine", help="Run memory refinement sessions")
    p_refine.add_argument("--agent", "-a", type=int, help="Agent ID (default: all due agents)")
    p_refine.add_argument("--json", "-j", action="store_true")

    # memory
    p_memory = subparsers.add_parser("memory", help="Inspect and curate memories")
    memory_sub = p_memory.add_subparsers(dest="memory_action", required=True)

    mem_list = memory_sub.add_parser("list", help="List memories")
    mem_list.add_argument("--agent", "-a", type=int, required=True, help="Agent ID")
    mem_list.add_argument("--type", choices=["journal", "core"])
    mem_list.add_argument("--discarded", action="store_true", help="Show discarded memories")
    mem_list.add_argument("--limit", "-l", type=int, default=50)
    mem_list.add_argument("--json", "-j", action="store_true")

    mem_search = memory_sub.add_parser("search", help="Search kept memories")
    mem_search.add_argument("query", help="Literal substring")
    mem_search.add_argument("--agent", "-a", type=int, required=True, help="Agent ID")
    mem_search.add_argument("--type", choices=["journal", "core"])
    mem_search.add_argument("--limit", "-l", type=int, default=50)
    mem_search.add_argument("--json", "-j", action="store_true")

    for action, help_text in (
        ("protect", "Mark a memory constitutional"),
        ("discard", "Soft-delete a memory"),
        ("restore", "Restore a discarded memory"),
    ):
        p = memory_sub.add_parser(action, help=help_text)
        p.add_argument("id", help="Memory ID (12 or #12)")
        p.add_argument("--agent", "-a", type=int, required=True, help="Agent ID")
        p.add_argument("--operator-user", type=int, help="User recorded as the actor")

    # whiteboard
    p_whiteboard = subparsers.add_parser("whiteboard", help="Inspect shared whiteboards")
    wb_sub = p_whiteboard.add_subparsers(dest="whiteboard_action", required=True)
    wb_list = wb_sub.add_parser("list", help="List whiteboards")
    wb_list.add_argument("--account", type=int, required=True, help="Account ID")
    wb_list.add_argument("--deleted", action="store_true", help="List deleted boards")
    wb_list.add_argument("--json", "-j", action="store_true")
    wb_show = wb_sub.add_parser("show", help="Show a whiteboard")
    wb_show.add_argument("ref", help="Board ID or name")
    wb_show.add_argument("--account", type=int, required=True, help="Account ID")
    wb_show.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_helix_logging(args.log_level or settings.log_level)

    if args.command == "mcp":
        cmd_mcp(args)
        return

    model = auto_configure_model(settings) if args.command in _MODEL_COMMANDS else None
    helix = Helix(args.db, model=model, job_queue=InlineJobQueue(), settings=settings)

    exit_code = 0
    try:
        if args.command == "agent":
            cmd_agent(args, helix)
        elif args.command == "reflect":
            exit_code = cmd_reflect(args, helix)
        elif args.command == "consolidate":
            exit_code = cmd_consolidate(args, helix)
        elif args.command == "refine":
            exit_code = cmd_refine(args, helix)
        elif args.command == "memory":
            cmd_memory(args, helix)
        elif args.command == "whiteboard":
            cmd_whiteboard(args, helix)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        print(f"✗ {e}", file=sys.stderr)
        exit_code = 1
    except HelixError as e:
        logger.error(f"Command failed: {e}")
        print(f"✗ {e}", file=sys.stderr)
        exit_code = 1
    finally:
        helix.close()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
