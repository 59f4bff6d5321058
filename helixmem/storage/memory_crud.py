"""Memory CRUD and search for helixmem storage.

Module-level functions that take an open connection so callers can
compose several of them inside one transaction. Every read filters on
``discarded_at`` explicitly; there is no implicit default scope.
"""

import logging
import sqlite3
from typing import Iterable, List, Optional

from helixmem.types import Memory, parse_datetime

logger = logging.getLogger(__name__)

_MEMORY_COLUMNS = "id, agent_id, content, memory_type, constitutional, discarded_at, created_at"


def escape_like_pattern(pattern: str) -> str:
    """Escape LIKE pattern special characters to prevent pattern injection."""
    return pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def row_to_memory(row: sqlite3.Row) -> Memory:
    return Memory(
        id=row["id"],
        agent_id=row["agent_id"],
        content=row["content"],
        memory_type=row["memory_type"],
        constitutional=bool(row["constitutional"]),
        discarded_at=parse_datetime(row["discarded_at"]),
        created_at=parse_datetime(row["created_at"]),
    )


def insert_memory(
    conn: sqlite3.Connection,
    agent_id: int,
    content: str,
    memory_type: str,
    created_at: str,
    constitutional: bool = False,
) -> int:
    cursor = conn.execute(
        """INSERT INTO memories (agent_id, content, memory_type, constitutional, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (agent_id, content, memory_type, 1 if constitutional else 0, created_at),
    )
    return cursor.lastrowid


def get_memory(
    conn: sqlite3.Connection, memory_id: int, agent_id: Optional[int] = None
) -> Optional[Memory]:
    """Fetch a memory whether kept or discarded."""
    if agent_id is None:
        row = conn.execute(
            f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
        ).fetchone()
    else:
        row = conn.execute(
            f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE id = ? AND agent_id = ?",
            (memory_id, agent_id),
        ).fetchone()
    return row_to_memory(row) if row else None


def get_kept_memories(
    conn: sqlite3.Connection, agent_id: int, memory_ids: Iterable[int]
) -> List[Memory]:
    """Kept memories of ``agent_id`` among ``memory_ids``, oldest first."""
    ids = list(memory_ids)
    if not ids:
        return []
    placeholders = ",".join("?" for _ in ids)
    rows = conn.execute(
        f"""SELECT {_MEMORY_COLUMNS} FROM memories
            WHERE agent_id = ? AND discarded_at IS NULL AND id IN ({placeholders})
            ORDER BY created_at ASC, id ASC""",
        [agent_id, *ids],
    ).fetchall()
    return [row_to_memory(r) for r in rows]


def list_memories(
    conn: sqlite3.Connection,
    agent_id: int,
    *,
    memory_type: Optional[str] = None,
    discarded: bool = False,
    journal_cutoff: Optional[str] = None,
    newest_first: bool = False,
    limit: Optional[int] = None,
) -> List[Memory]:
    """List memories for an agent.

    Args:
        memory_type: Restrict to ``core`` or ``journal``
        discarded: List discarded memories instead of kept ones
        journal_cutoff: When set, journal entries created before it are excluded
        newest_first: Order by created_at descending
        limit: Max rows
    """
    conditions = ["agent_id = ?"]
    params: list = [agent_id]

    conditions.append("discarded_at IS NOT NULL" if discarded else "discarded_at IS NULL")
    if memory_type:
        conditions.append("memory_type = ?")
        params.append(memory_type)
    if journal_cutoff:
        conditions.append("(memory_type = 'core' OR created_at >= ?)")
        params.append(journal_cutoff)

    order = "DESC" if newest_first else "ASC"
    sql = (
        f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE {' AND '.join(conditions)} "
        f"ORDER BY created_at {order}, id {order}"
    )
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    return [row_to_memory(r) for r in conn.execute(sql, params).fetchall()]


def search_memories(
    conn: sqlite3.Connection,
    agent_id: int,
    query: str,
    *,
    memory_type: Optional[str] = None,
    limit: int = 50,
) -> List[Memory]:
    """Case-insensitive substring search over kept memories.

    LIKE metacharacters in ``query`` are escaped, so ``100%`` matches
    the literal text only.
    """
    pattern = f"%{escape_like_pattern(query)}%"
    conditions = ["agent_id = ?", "discarded_at IS NULL", "content LIKE ? ESCAPE '\\'"]
    params: list = [agent_id, pattern]
    if memory_type:
        conditions.append("memory_type = ?")
        params.append(memory_type)
    params.append(limit)
    rows = conn.execute(
        f"""SELECT {_MEMORY_COLUMNS} FROM memories
            WHERE {' AND '.join(conditions)}
            ORDER BY created_at DESC, id DESC
            LIMIT ?""",
        params,
    ).fetchall()
    return [row_to_memory(r) for r in rows]


def kept_contents(conn: sqlite3.Connection, agent_id: int) -> List[str]:
    rows = conn.execute(
        "SELECT content FROM memories WHERE agent_id = ? AND discarded_at IS NULL",
        (agent_id,),
    ).fetchall()
    return [r["content"] for r in rows]


def mark_discarded(conn: sqlite3.Connection, memory_ids: Iterable[int], discarded_at: str) -> int:
    """Soft-delete kept, non-constitutional memories. Returns rows changed."""
    ids = list(memory_ids)
    if not ids:
        return 0
    placeholders = ",".join("?" for _ in ids)
    cursor = conn.execute(
        f"""UPDATE memories SET discarded_at = ?
            WHERE id IN ({placeholders}) AND discarded_at IS NULL AND constitutional = 0""",
        [discarded_at, *ids],
    )
    return cursor.rowcount


def clear_discarded(conn: sqlite3.Connection, memory_id: int) -> bool:
    cursor = conn.execute(
        "UPDATE memories SET discarded_at = NULL WHERE id = ? AND discarded_at IS NOT NULL",
        (memory_id,),
    )
    return cursor.rowcount > 0


def set_constitutional(conn: sqlite3.Connection, memory_id: int) -> bool:
    """Mark a memory constitutional. Returns False if it already was."""
    cursor = conn.execute(
        "UPDATE memories SET constitutional = 1 WHERE id = ? AND constitutional = 0",
        (memory_id,),
    )
    return cursor.rowcount > 0


def clear_constitutional(conn: sqlite3.Connection, memory_id: int) -> bool:
    cursor = conn.execute(
        "UPDATE memories SET constitutional = 0 WHERE id = ? AND constitutional = 1",
        (memory_id,),
    )
    return cursor.rowcount > 0


def update_content(conn: sqlite3.Connection, memory_id: int, content: str) -> bool:
    cursor = conn.execute(
        "UPDATE memories SET content = ? WHERE id = ? AND discarded_at IS NULL",
        (content, memory_id),
    )
    return cursor.rowcount > 0


def agents_with_journal_since(conn: sqlite3.Connection, cutoff: str) -> List[int]:
    """Active agents holding at least one kept journal entry newer than ``cutoff``."""
    rows = conn.execute(
        """SELECT DISTINCT m.agent_id FROM memories m
           JOIN agents a ON a.id = m.agent_id
           WHERE m.memory_type = 'journal' AND m.discarded_at IS NULL
             AND m.created_at >= ? AND a.active = 1
           ORDER BY m.agent_id""",
        (cutoff,),
    ).fetchall()
    return [r["agent_id"] for r in rows]
