"""Shared helpers for CLI commands."""

import json
from typing import Optional

from helixmem.types import HumanActor


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def operator_actor(helix, user_id: Optional[int]) -> Optional[HumanActor]:
    """Resolve ``--operator-user`` into the actor recorded in the audit log."""
    if user_id is None:
        return None
    user = helix.storage.get_user(user_id)
    if user is None:
        raise ValueError(f"User {user_id} not found")
    return HumanActor(user_id=user.id, name=user.name)
