"""Background job commands: reflect, consolidate, refine."""

import logging
from typing import TYPE_CHECKING

from helixmem.cli.commands.helpers import print_json

if TYPE_CHECKING:
    from helixmem import Helix

logger = logging.getLogger(__name__)


def _require_model(helix: "Helix") -> bool:
    if helix.inference is None:
        print("No model configured. Set ANTHROPIC_API_KEY, OPENAI_API_KEY or OPENROUTER_API_KEY.")
        return False
    return True


def cmd_reflect(args, helix: "Helix"):
    """Promote journal entries to core memories."""
    if not _require_model(helix):
        return 1
    if args.agent is not None:
        promoted = helix.reflect_agent(args.agent)
        if args.json:
            print_json([m.as_ledger_entry() for m in promoted])
            return 0
        print(f"Promoted {len(promoted)} journal entr{'y' if len(promoted) == 1 else 'ies'}")
        for m in promoted:
            print(f"  #{m.id}: {m.content[:70]}")
        return 0

    counts = helix.reflect_all()
    if args.json:
        print_json(counts)
        return 0
    if not counts:
        print("No agents with recent journal entries.")
    for agent_id, count in counts.items():
        print(f"Agent #{agent_id}: promoted {count}")
    return 0


def cmd_consolidate(args, helix: "Helix"):
    """Extract memories from conversations."""
    if not _require_model(helix):
        return 1
    if args.stale:
        enqueued = helix.sweep_stale()
        print(f"Consolidated {len(enqueued)} idle conversation(s)")
        for chat_id, agent_id in enqueued:
            print(f"  chat #{chat_id} / agent #{agent_id}")
        return 0

    if args.chat is None or args.agent is None:
        print("consolidate needs --chat and --agent (or --stale)")
        return 1

    outcome = helix.consolidate(args.chat, args.agent)
    if outcome is None:
        print("Another consolidation holds this conversation; try again later.")
        return 1
    if args.json:
        print_json(outcome.__dict__)
        return 0 if outcome.status != "failed" else 1
    if outcome.status == "failed":
        print(f"✗ Consolidation failed: {outcome.error}")
        return 1
    if outcome.status == "nothing_to_do":
        print("Nothing new to consolidate.")
        return 0
    print(f"✓ Extracted {outcome.created} memor{'y' if outcome.created == 1 else 'ies'} "
          f"(watermark #{outcome.watermark})")
    return 0


def cmd_refine(args, helix: "Helix"):
    """Run consent-gated refinement sessions."""
    if not _require_model(helix):
        return 1
    outcomes = [helix.refine_agent(args.agent)] if args.agent is not None else helix.refine_all()
    if args.json:
        print_json([o.__dict__ for o in outcomes])
        return 0
    if not outcomes:
        print("No agents need refinement.")
    for o in outcomes:
        line = f"Agent #{o.agent_id}: {o.status}"
        if o.turns:
            line += f" after {o.turns} turn(s)"
        if o.stats:
            line += " " + ", ".join(f"{k}={v}" for k, v in o.stats.items())
        if o.error:
            line += f" ({o.error})"
        print(line)
    return 1 if any(o.status == "failed" for o in outcomes) else 0
