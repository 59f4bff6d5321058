"""Account and agent bootstrap commands."""

import logging
from typing import TYPE_CHECKING

from helixmem.cli.commands.helpers import print_json
from helixmem.validation import sanitize_string

if TYPE_CHECKING:
    from helixmem import Helix

logger = logging.getLogger(__name__)


def cmd_agent(args, helix: "Helix"):
    """Handle agent subcommands."""
    if args.agent_action == "create":
        account_id = args.account
        if account_id is None:
            account = helix.create_account(sanitize_string(args.account_name, "account", 100))
            account_id = account.id
            print(f"✓ Created account #{account.id} ({account.name})")
        agent = helix.create_agent(account_id, sanitize_string(args.name, "name", 100))
        print(f"✓ Created agent #{agent.id} ({agent.name}) in account #{account_id}")

    elif args.agent_action == "list":
        agents = helix.storage.list_agents(args.account, active_only=not args.all)
        if args.json:
            print_json(
                [
                    {
                        "id": a.id,
                        "account_id": a.account_id,
                        "name": a.name,
                        "active": a.active,
                        "last_refinement_at": a.last_refinement_at,
                    }
                    for a in agents
                ]
            )
            return
        if not agents:
            print("No agents.")
            return
        for a in agents:
            status = "" if a.active else " (inactive)"
            print(f"#{a.id} [{a.account_id}] {a.name}{status}")

    elif args.agent_action == "context":
        context = helix.memory_context(args.id)
        print(context or "(no active memories)")
