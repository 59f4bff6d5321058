"""Whiteboard commands for the helixmem CLI."""

from typing import TYPE_CHECKING

from helixmem.cli.commands.helpers import print_json
from helixmem.whiteboards import over_recommended_length

if TYPE_CHECKING:
    from helixmem import Helix


def cmd_whiteboard(args, helix: "Helix"):
    """Handle whiteboard subcommands."""
    if args.whiteboard_action == "list":
        if args.deleted:
            boards = helix.whiteboards.list_deleted(args.account)
        else:
            boards = helix.whiteboards.list_active(args.account)
        if args.json:
            print_json(
                [
                    {
                        "id": b.id,
                        "name": b.name,
                        "summary": b.summary,
                        "revision": b.revision,
                        "length": len(b.content or ""),
                        "deleted_at": b.deleted_at,
                    }
                    for b in boards
                ]
            )
            return
        if not boards:
            print("No whiteboards.")
            return
        for b in boards:
            warn = " ⚠ long" if over_recommended_length(b) else ""
            print(f"#{b.id} {b.name} (rev {b.revision}, {len(b.content or '')} chars){warn}")
            if b.summary:
                print(f"    {b.summary}")

    elif args.whiteboard_action == "show":
        board = helix.whiteboards.resolve(args.account, args.ref, deleted=None)
        if args.json:
            print_json(
                {
                    "id": board.id,
                    "name": board.name,
                    "summary": board.summary,
                    "content": board.content,
                    "revision": board.revision,
                    "last_edited_at": board.last_edited_at,
                    "last_edited_by": board.editor_name,
                    "deleted": board.deleted,
                }
            )
            return
        print(f"# {board.name} (rev {board.revision}){' [deleted]' if board.deleted else ''}")
        if board.summary:
            print(f"> {board.summary}")
        print()
        print(board.content or "(empty)")
