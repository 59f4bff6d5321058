"""Memory commands for the helixmem CLI: list, search, protect, discard, restore."""

import logging
from typing import TYPE_CHECKING

from helixmem.cli.commands.helpers import operator_actor, print_json
from helixmem.utils import parse_id
from helixmem.validation import sanitize_string

if TYPE_CHECKING:
    from helixmem import Helix

logger = logging.getLogger(__name__)


def _print_memories(helix: "Helix", memories, as_json: bool):
    if as_json:
        print_json([m.as_ledger_entry() for m in memories])
        return
    if not memories:
        print("No memories.")
        return
    for m in memories:
        flags = []
        if m.constitutional:
            flags.append("constitutional")
        if not m.kept:
            flags.append("discarded")
        elif m.is_journal and helix.memories.is_expired(m):
            flags.append("expired")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        date = m.created_at.date().isoformat() if m.created_at else "?"
        print(f"#{m.id} {m.memory_type:<7} {date} ~{m.token_estimate}t{suffix}")
        print(f"    {m.content[:200]}")


def cmd_memory(args, helix: "Helix"):
    """Handle memory subcommands."""
    agent_id = args.agent

    if args.memory_action == "list":
        memories = helix.memories.list(
            agent_id, args.type, discarded=args.discarded, limit=args.limit
        )
        _print_memories(helix, memories, args.json)

    elif args.memory_action == "search":
        query = sanitize_string(args.query, "query", 500)
        results = helix.search_memories(agent_id, query, memory_type=args.type, limit=args.limit)
        if not results and not args.json:
            print(f"No results for '{args.query}'")
            return
        _print_memories(helix, results, args.json)

    elif args.memory_action in ("protect", "discard", "restore"):
        actor = operator_actor(helix, args.operator_user)
        memory_id = parse_id(args.id)
        operation = getattr(helix.memories, args.memory_action)
        memory = operation(agent_id, memory_id, actor)
        verb = {"protect": "Protected", "discard": "Discarded", "restore": "Restored"}
        print(f"✓ {verb[args.memory_action]} memory #{memory.id}")
