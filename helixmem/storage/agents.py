"""Account, user and agent records for helixmem storage."""

import sqlite3
from typing import Any, List, Optional

from helixmem.types import Account, Agent, User, parse_datetime

# Agent columns an update may touch; keeps field names out of SQL injection reach
AGENT_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "system_prompt",
        "reflection_prompt",
        "memory_reflection_prompt",
        "refinement_prompt",
        "refinement_threshold",
        "active",
    }
)


def row_to_account(row: sqlite3.Row) -> Account:
    return Account(id=row["id"], name=row["name"], created_at=parse_datetime(row["created_at"]))


def row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        account_id=row["account_id"],
        name=row["name"],
        email=row["email"],
        created_at=parse_datetime(row["created_at"]),
    )


def row_to_agent(row: sqlite3.Row) -> Agent:
    return Agent(
        id=row["id"],
        account_id=row["account_id"],
        name=row["name"],
        system_prompt=row["system_prompt"],
        reflection_prompt=row["reflection_prompt"],
        memory_reflection_prompt=row["memory_reflection_prompt"],
        refinement_prompt=row["refinement_prompt"],
        refinement_threshold=row["refinement_threshold"],
        last_refinement_at=parse_datetime(row["last_refinement_at"]),
        active=bool(row["active"]),
        created_at=parse_datetime(row["created_at"]),
    )


def insert_account(conn: sqlite3.Connection, name: str, now: str) -> int:
    cursor = conn.execute("INSERT INTO accounts (name, created_at) VALUES (?, ?)", (name, now))
    return cursor.lastrowid


def get_account(conn: sqlite3.Connection, account_id: int) -> Optional[Account]:
    row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
    return row_to_account(row) if row else None


def insert_user(
    conn: sqlite3.Connection, account_id: int, name: str, email: Optional[str], now: str
) -> int:
    cursor = conn.execute(
        "INSERT INTO users (account_id, name, email, created_at) VALUES (?, ?, ?, ?)",
        (account_id, name, email, now),
    )
    return cursor.lastrowid


def get_user(conn: sqlite3.Connection, user_id: int) -> Optional[User]:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return row_to_user(row) if row else None


def insert_agent(
    conn: sqlite3.Connection,
    account_id: int,
    name: str,
    now: str,
    system_prompt: Optional[str] = None,
) -> int:
    cursor = conn.execute(
        """INSERT INTO agents (account_id, name, system_prompt, created_at)
           VALUES (?, ?, ?, ?)""",
        (account_id, name, system_prompt, now),
    )
    return cursor.lastrowid


def get_agent(conn: sqlite3.Connection, agent_id: int) -> Optional[Agent]:
    row = conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
    return row_to_agent(row) if row else None


def list_agents(
    conn: sqlite3.Connection, account_id: Optional[int] = None, active_only: bool = True
) -> List[Agent]:
    conditions = ["1=1"]
    params: list = []
    if account_id is not None:
        conditions.append("account_id = ?")
        params.append(account_id)
    if active_only:
        conditions.append("active = 1")
    rows = conn.execute(
        f"SELECT * FROM agents WHERE {' AND '.join(conditions)} ORDER BY id", params
    ).fetchall()
    return [row_to_agent(r) for r in rows]


def agent_name_taken(
    conn: sqlite3.Connection, account_id: int, name: str, exclude_id: Optional[int] = None
) -> bool:
    row = conn.execute(
        """SELECT 1 FROM agents
           WHERE account_id = ? AND name = ? COLLATE NOCASE AND id != ?
           LIMIT 1""",
        (account_id, name, exclude_id or 0),
    ).fetchone()
    return row is not None


def update_agent_field(conn: sqlite3.Connection, agent_id: int, field: str, value: Any) -> bool:
    if field not in AGENT_UPDATABLE_FIELDS:
        raise ValueError(f"Invalid agent field: {field}")
    cursor = conn.execute(f"UPDATE agents SET {field} = ? WHERE id = ?", (value, agent_id))
    return cursor.rowcount > 0
