"""Whiteboard persistence for helixmem storage.

Content writes are compare-and-swap on ``revision``. A zero-row update
is classified afterwards (missing, deleted, or stale revision) by
re-reading the row, the same way a status claim is classified.
"""

import sqlite3
from typing import List, Optional

from helixmem.types import Whiteboard, actor_from_columns, parse_datetime

from .memory_crud import escape_like_pattern

_SELECT = """SELECT w.*,
       CASE w.last_edited_by_type
           WHEN 'user' THEN COALESCE(
               NULLIF(u.name, ''), substr(u.email, 1, instr(u.email, '@') - 1)
           )
           WHEN 'agent' THEN a.name
       END AS editor_name
FROM whiteboards w
LEFT JOIN users u ON w.last_edited_by_type = 'user' AND u.id = w.last_edited_by_id
LEFT JOIN agents a ON w.last_edited_by_type = 'agent' AND a.id = w.last_edited_by_id"""


def row_to_whiteboard(row: sqlite3.Row) -> Whiteboard:
    return Whiteboard(
        id=row["id"],
        account_id=row["account_id"],
        name=row["name"],
        summary=row["summary"],
        content=row["content"],
        revision=row["revision"],
        deleted_at=parse_datetime(row["deleted_at"]),
        last_edited_at=parse_datetime(row["last_edited_at"]),
        last_edited_by=actor_from_columns(
            row["last_edited_by_type"], row["last_edited_by_id"], row["editor_name"]
        ),
        created_at=parse_datetime(row["created_at"]),
    )


def insert_whiteboard(
    conn: sqlite3.Connection,
    account_id: int,
    name: str,
    summary: str,
    content: str,
    now: str,
    actor_type: Optional[str],
    actor_id: Optional[int],
) -> int:
    """Raises sqlite3.IntegrityError when an active board already has this name."""
    cursor = conn.execute(
        """INSERT INTO whiteboards
           (account_id, name, summary, content, revision, last_edited_at,
            last_edited_by_type, last_edited_by_id, created_at)
           VALUES (?, ?, ?, ?, 1, ?, ?, ?, ?)""",
        (account_id, name, summary, content, now, actor_type, actor_id, now),
    )
    return cursor.lastrowid


def get_whiteboard(
    conn: sqlite3.Connection, board_id: int, account_id: Optional[int] = None
) -> Optional[Whiteboard]:
    sql = f"{_SELECT} WHERE w.id = ?"
    params: list = [board_id]
    if account_id is not None:
        sql += " AND w.account_id = ?"
        params.append(account_id)
    row = conn.execute(sql, params).fetchone()
    return row_to_whiteboard(row) if row else None


def list_whiteboards(
    conn: sqlite3.Connection, account_id: int, deleted: bool = False
) -> List[Whiteboard]:
    if deleted:
        sql = f"{_SELECT} WHERE w.account_id = ? AND w.deleted_at IS NOT NULL ORDER BY w.deleted_at DESC"
    else:
        sql = f"{_SELECT} WHERE w.account_id = ? AND w.deleted_at IS NULL ORDER BY w.name COLLATE NOCASE"
    return [row_to_whiteboard(r) for r in conn.execute(sql, (account_id,)).fetchall()]


def find_by_exact_name(
    conn: sqlite3.Connection, account_id: int, name: str, deleted: bool = False
) -> List[Whiteboard]:
    state = "IS NOT NULL" if deleted else "IS NULL"
    rows = conn.execute(
        f"""{_SELECT} WHERE w.account_id = ? AND w.deleted_at {state}
            AND w.name = ? COLLATE NOCASE ORDER BY w.id""",
        (account_id, name),
    ).fetchall()
    return [row_to_whiteboard(r) for r in rows]


def find_by_partial_name(
    conn: sqlite3.Connection, account_id: int, tokens: List[str], deleted: bool = False
) -> List[Whiteboard]:
    """Boards whose name contains ``tokens`` in order, with anything in between."""
    pattern = "%" + "%".join(escape_like_pattern(t) for t in tokens) + "%"
    state = "IS NOT NULL" if deleted else "IS NULL"
    rows = conn.execute(
        f"""{_SELECT} WHERE w.account_id = ? AND w.deleted_at {state}
            AND w.name LIKE ? ESCAPE '\\' ORDER BY w.name COLLATE NOCASE""",
        (account_id, pattern),
    ).fetchall()
    return [row_to_whiteboard(r) for r in rows]


def active_name_taken(
    conn: sqlite3.Connection, account_id: int, name: str, exclude_id: Optional[int] = None
) -> bool:
    row = conn.execute(
        """SELECT 1 FROM whiteboards
           WHERE account_id = ? AND deleted_at IS NULL AND name = ? COLLATE NOCASE AND id != ?
           LIMIT 1""",
        (account_id, name, exclude_id or 0),
    ).fetchone()
    return row is not None


def compare_and_swap(
    conn: sqlite3.Connection,
    board_id: int,
    expected_revision: int,
    now: str,
    actor_type: Optional[str],
    actor_id: Optional[int],
    *,
    content: Optional[str] = None,
    name: Optional[str] = None,
    summary: Optional[str] = None,
) -> bool:
    """Apply an update only if the board is active and still at ``expected_revision``.

    Revision advances by one when ``content`` is supplied.
    """
    assignments = ["last_edited_at = ?", "last_edited_by_type = ?", "last_edited_by_id = ?"]
    params: list = [now, actor_type, actor_id]
    if content is not None:
        assignments.extend(["content = ?", "revision = revision + 1"])
        params.append(content)
    if name is not None:
        assignments.append("name = ?")
        params.append(name)
    if summary is not None:
        assignments.append("summary = ?")
        params.append(summary)
    params.extend([board_id, expected_revision])
    cursor = conn.execute(
        f"""UPDATE whiteboards SET {', '.join(assignments)}
            WHERE id = ? AND revision = ? AND deleted_at IS NULL""",
        params,
    )
    return cursor.rowcount == 1


def mark_deleted(conn: sqlite3.Connection, board_id: int, now: str) -> bool:
    cursor = conn.execute(
        "UPDATE whiteboards SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL", (now, board_id)
    )
    return cursor.rowcount == 1


def clear_deleted(conn: sqlite3.Connection, board_id: int) -> bool:
    """Raises sqlite3.IntegrityError if an active board took the name meanwhile."""
    cursor = conn.execute(
        "UPDATE whiteboards SET deleted_at = NULL WHERE id = ? AND deleted_at IS NOT NULL",
        (board_id,),
    )
    return cursor.rowcount == 1
