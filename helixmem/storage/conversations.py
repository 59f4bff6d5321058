"""Chats, messages and consolidation state for helixmem storage.

Consolidation state transitions are single conditional UPDATEs so two
workers can never both hold a (chat, agent) claim. Each returns whether
it won; callers treat False as "someone else has it".
"""

import sqlite3
from typing import List, Optional, Tuple

from helixmem.types import Chat, ConsolidationState, Message, parse_datetime

# === Chats ===


def row_to_chat(row: sqlite3.Row) -> Chat:
    return Chat(
        id=row["id"],
        account_id=row["account_id"],
        title=row["title"],
        group=bool(row["is_group"]),
        active_whiteboard_id=row["active_whiteboard_id"],
        created_at=parse_datetime(row["created_at"]),
    )


def insert_chat(
    conn: sqlite3.Connection, account_id: int, title: Optional[str], group: bool, now: str
) -> int:
    cursor = conn.execute(
        "INSERT INTO chats (account_id, title, is_group, created_at) VALUES (?, ?, ?, ?)",
        (account_id, title, 1 if group else 0, now),
    )
    return cursor.lastrowid


def get_chat(conn: sqlite3.Connection, chat_id: int) -> Optional[Chat]:
    row = conn.execute("SELECT * FROM chats WHERE id = ?", (chat_id,)).fetchone()
    return row_to_chat(row) if row else None


def add_participant(conn: sqlite3.Connection, chat_id: int, agent_id: int) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO chat_agents (chat_id, agent_id) VALUES (?, ?)", (chat_id, agent_id)
    )


def participant_ids(conn: sqlite3.Connection, chat_id: int) -> List[int]:
    rows = conn.execute(
        """SELECT ca.agent_id FROM chat_agents ca
           JOIN agents a ON a.id = ca.agent_id
           WHERE ca.chat_id = ? AND a.active = 1
           ORDER BY ca.agent_id""",
        (chat_id,),
    ).fetchall()
    return [r["agent_id"] for r in rows]


def set_active_whiteboard(
    conn: sqlite3.Connection, chat_id: int, whiteboard_id: Optional[int]
) -> bool:
    cursor = conn.execute(
        "UPDATE chats SET active_whiteboard_id = ? WHERE id = ?", (whiteboard_id, chat_id)
    )
    return cursor.rowcount > 0


def clear_whiteboard_references(conn: sqlite3.Connection, whiteboard_id: int) -> int:
    cursor = conn.execute(
        "UPDATE chats SET active_whiteboard_id = NULL WHERE active_whiteboard_id = ?",
        (whiteboard_id,),
    )
    return cursor.rowcount


# === Messages ===


def row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        chat_id=row["chat_id"],
        agent_id=row["agent_id"],
        user_id=row["user_id"],
        author_name=row["author_name"],
        content=row["content"],
        token_count=row["token_count"],
        created_at=parse_datetime(row["created_at"]),
    )


def insert_message(
    conn: sqlite3.Connection,
    chat_id: int,
    content: str,
    author_name: str,
    token_count: int,
    now: str,
    agent_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> int:
    cursor = conn.execute(
        """INSERT INTO messages (chat_id, agent_id, user_id, author_name, content, token_count, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (chat_id, agent_id, user_id, author_name, content, token_count, now),
    )
    return cursor.lastrowid


def messages_after(
    conn: sqlite3.Connection,
    chat_id: int,
    after_id: Optional[int],
    up_to_id: Optional[int] = None,
) -> List[Message]:
    """Messages in ``(after_id, up_to_id]``, oldest first."""
    params: list = [chat_id, after_id or 0]
    sql = "SELECT * FROM messages WHERE chat_id = ? AND id > ?"
    if up_to_id is not None:
        sql += " AND id <= ?"
        params.append(up_to_id)
    sql += " ORDER BY id ASC"
    return [row_to_message(r) for r in conn.execute(sql, params).fetchall()]


def pending_stats(
    conn: sqlite3.Connection, chat_id: int, after_id: Optional[int]
) -> Tuple[int, int, Optional[str], Optional[int]]:
    """(count, tokens, oldest created_at, newest id) of messages above the watermark."""
    row = conn.execute(
        """SELECT COUNT(*) AS n, COALESCE(SUM(token_count), 0) AS tokens,
                  MIN(created_at) AS oldest, MAX(id) AS newest
           FROM messages WHERE chat_id = ? AND id > ?""",
        (chat_id, after_id or 0),
    ).fetchone()
    return row["n"], row["tokens"], row["oldest"], row["newest"]


# === Consolidation state ===


def row_to_state(row: sqlite3.Row) -> ConsolidationState:
    return ConsolidationState(
        chat_id=row["chat_id"],
        agent_id=row["agent_id"],
        status=row["status"],
        claim_token=row["claim_token"],
        claimed_at=parse_datetime(row["claimed_at"]),
        last_consolidated_at=parse_datetime(row["last_consolidated_at"]),
        last_consolidated_message_id=row["last_consolidated_message_id"],
        last_error=row["last_error"],
        updated_at=parse_datetime(row["updated_at"]),
    )


def get_state(conn: sqlite3.Connection, chat_id: int, agent_id: int) -> Optional[ConsolidationState]:
    row = conn.execute(
        "SELECT * FROM consolidation_states WHERE chat_id = ? AND agent_id = ?",
        (chat_id, agent_id),
    ).fetchone()
    return row_to_state(row) if row else None


def ensure_state(conn: sqlite3.Connection, chat_id: int, agent_id: int, now: str) -> None:
    conn.execute(
        """INSERT OR IGNORE INTO consolidation_states (chat_id, agent_id, status, updated_at)
           VALUES (?, ?, 'idle', ?)""",
        (chat_id, agent_id, now),
    )


def try_claim(
    conn: sqlite3.Connection,
    chat_id: int,
    agent_id: int,
    token: str,
    now: str,
    stale_before: Optional[str] = None,
) -> bool:
    """idle -> pending. A claim older than ``stale_before`` may be taken over."""
    sql = """UPDATE consolidation_states
             SET status = 'pending', claim_token = ?, claimed_at = ?, updated_at = ?
             WHERE chat_id = ? AND agent_id = ? AND (status = 'idle'"""
    params: list = [token, now, now, chat_id, agent_id]
    if stale_before:
        sql += " OR claimed_at < ?"
        params.append(stale_before)
    sql += ")"
    return conn.execute(sql, params).rowcount == 1


def mark_running(conn: sqlite3.Connection, chat_id: int, agent_id: int, token: str, now: str) -> bool:
    """pending -> running, only for the holder of ``token``."""
    cursor = conn.execute(
        """UPDATE consolidation_states
           SET status = 'running', updated_at = ?
           WHERE chat_id = ? AND agent_id = ? AND status = 'pending' AND claim_token = ?""",
        (now, chat_id, agent_id, token),
    )
    return cursor.rowcount == 1


def mark_succeeded(
    conn: sqlite3.Connection,
    chat_id: int,
    agent_id: int,
    token: str,
    now: str,
    watermark: Optional[int],
) -> bool:
    """running -> idle, advancing the watermark."""
    cursor = conn.execute(
        """UPDATE consolidation_states
           SET status = 'idle', claim_token = NULL, claimed_at = NULL, last_error = NULL,
               last_consolidated_at = ?,
               last_consolidated_message_id = COALESCE(?, last_consolidated_message_id),
               updated_at = ?
           WHERE chat_id = ? AND agent_id = ? AND status = 'running' AND claim_token = ?""",
        (now, watermark, now, chat_id, agent_id, token),
    )
    return cursor.rowcount == 1


def mark_failed(
    conn: sqlite3.Connection, chat_id: int, agent_id: int, token: str, now: str, error: str
) -> bool:
    """pending/running -> idle, watermark untouched."""
    cursor = conn.execute(
        """UPDATE consolidation_states
           SET status = 'idle', claim_token = NULL, claimed_at = NULL, last_error = ?, updated_at = ?
           WHERE chat_id = ? AND agent_id = ? AND claim_token = ?""",
        (error[:1000], now, chat_id, agent_id, token),
    )
    return cursor.rowcount == 1


def stale_candidates(conn: sqlite3.Connection, idle_before: str) -> List[Tuple[int, int]]:
    """(chat_id, agent_id) pairs in group chats idle since ``idle_before`` with unconsolidated messages."""
    rows = conn.execute(
        """SELECT ca.chat_id, ca.agent_id
           FROM chat_agents ca
           JOIN chats c ON c.id = ca.chat_id AND c.is_group = 1
           JOIN agents a ON a.id = ca.agent_id AND a.active = 1
           LEFT JOIN consolidation_states s
             ON s.chat_id = ca.chat_id AND s.agent_id = ca.agent_id
           WHERE COALESCE(s.status, 'idle') = 'idle'
             AND (SELECT MAX(m.created_at) FROM messages m WHERE m.chat_id = ca.chat_id) < ?
             AND EXISTS (
                 SELECT 1 FROM messages m
                 WHERE m.chat_id = ca.chat_id
                   AND m.id > COALESCE(s.last_consolidated_message_id, 0)
             )
           ORDER BY ca.chat_id, ca.agent_id""",
        (idle_before,),
    ).fetchall()
    return [(r["chat_id"], r["agent_id"]) for r in rows]
