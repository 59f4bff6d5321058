"""Database schema for helixmem SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3

# Allowed table names for SQL queries (prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "schema_version",
        "accounts",
        "users",
        "agents",
        "chats",
        "chat_agents",
        "messages",
        "memories",
        "consolidation_states",
        "whiteboards",
        "audit_log",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    name TEXT NOT NULL,
    email TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_users_account ON users(account_id);

-- Agents: name unique per account (case-insensitive)
CREATE TABLE IF NOT EXISTS agents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    name TEXT NOT NULL,
    system_prompt TEXT,
    reflection_prompt TEXT,
    memory_reflection_prompt TEXT,
    refinement_prompt TEXT,
    refinement_threshold REAL,
    last_refinement_at TEXT,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_agents_account_name
    ON agents(account_id, name COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS chats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    title TEXT,
    is_group INTEGER NOT NULL DEFAULT 0,
    active_whiteboard_id INTEGER REFERENCES whiteboards(id),
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chats_account ON chats(account_id);
CREATE INDEX IF NOT EXISTS idx_chats_whiteboard ON chats(active_whiteboard_id);

CREATE TABLE IF NOT EXISTS chat_agents (
    chat_id INTEGER NOT NULL REFERENCES chats(id),
    agent_id INTEGER NOT NULL REFERENCES agents(id),
    PRIMARY KEY (chat_id, agent_id)
);

-- Messages: ids are monotonic and serve as the consolidation watermark
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id INTEGER NOT NULL REFERENCES chats(id),
    agent_id INTEGER REFERENCES agents(id),
    user_id INTEGER REFERENCES users(id),
    author_name TEXT NOT NULL,
    content TEXT NOT NULL,
    token_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, id);

-- Memories: soft delete via discarded_at, never physically removed
CREATE TABLE IF NOT EXISTS memories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id INTEGER NOT NULL REFERENCES agents(id),
    content TEXT NOT NULL,
    memory_type TEXT NOT NULL CHECK (memory_type IN ('core', 'journal')),
    constitutional INTEGER NOT NULL DEFAULT 0,
    discarded_at TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memories_agent ON memories(agent_id, discarded_at, memory_type);
CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(agent_id, created_at);

-- One row per (chat, agent); status transitions use conditional updates
CREATE TABLE IF NOT EXISTS consolidation_states (
    chat_id INTEGER NOT NULL REFERENCES chats(id),
    agent_id INTEGER NOT NULL REFERENCES agents(id),
    status TEXT NOT NULL DEFAULT 'idle' CHECK (status IN ('idle', 'pending', 'running')),
    claim_token TEXT,
    claimed_at TEXT,
    last_consolidated_at TEXT,
    last_consolidated_message_id INTEGER,
    last_error TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (chat_id, agent_id)
);

-- Whiteboards: active names unique per account, deleted names reusable
CREATE TABLE IF NOT EXISTS whiteboards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    name TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    revision INTEGER NOT NULL DEFAULT 1,
    deleted_at TEXT,
    last_edited_at TEXT,
    last_edited_by_type TEXT,
    last_edited_by_id INTEGER,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_whiteboards_active_name
    ON whiteboards(account_id, name COLLATE NOCASE) WHERE deleted_at IS NULL;

-- Append-only audit trail
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    actor_type TEXT,
    actor_id INTEGER,
    account_id INTEGER,
    agent_id INTEGER,
    subject_type TEXT,
    subject_id INTEGER,
    data TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_agent ON audit_log(agent_id, created_at);
CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables and record the schema version."""
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Updating schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
