"""SQLite storage backend for helixmem.

One database file holds the environment records (accounts, users,
agents, chats, messages) and the engine's own state (memories,
consolidation state, whiteboards, audit log). Connections are opened
per operation; WAL mode plus a busy timeout lets background workers and
the foreground share the file.
"""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from helixmem.protocols import NotFoundError, ValidationError
from helixmem.types import (
    Account,
    Actor,
    Agent,
    AuditRecord,
    Chat,
    ConsolidationState,
    Memory,
    Message,
    User,
    estimate_tokens,
    utc_now,
)

from . import agents as agent_crud
from . import conversations, memory_crud
from .memory_ops import MemoryOps, insert_audit
from .schema import init_db

logger = logging.getLogger(__name__)


class SQLiteStorage:
    """SQLite-backed storage for one helixmem installation.

    Args:
        db_path: Database file. Parent directories are created.
        now_fn: Callable returning the current timestamp string. Tests
            inject a fixed clock here.
    """

    def __init__(self, db_path: Path, now_fn: Callable[[], str] = utc_now):
        self.db_path = Path(db_path).expanduser()
        self._now = now_fn
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Memory lifecycle operations
        self.memory_ops = MemoryOps(connect_fn=self._connect, now_fn=self._now)

        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Open a connection. Prefer the _connect() context manager."""
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self):
        """Connections are per-operation; nothing persistent to close."""
        pass

    def _init_db(self):
        with self._connect() as conn:
            init_db(conn)

    @property
    def connect(self) -> Callable:
        """The transaction context manager, for stores that compose crud calls."""
        return self._connect

    @property
    def now(self) -> Callable[[], str]:
        return self._now

    # === Accounts & users ===

    def create_account(self, name: str) -> Account:
        with self._connect() as conn:
            account_id = agent_crud.insert_account(conn, name, self._now())
            return agent_crud.get_account(conn, account_id)

    def create_user(self, account_id: int, name: str, email: Optional[str] = None) -> User:
        with self._connect() as conn:
            user_id = agent_crud.insert_user(conn, account_id, name, email, self._now())
            return agent_crud.get_user(conn, user_id)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            return agent_crud.get_user(conn, user_id)

    # === Agents ===

    def create_agent(self, account_id: int, name: str, system_prompt: Optional[str] = None) -> Agent:
        with self._connect() as conn:
            if agent_crud.agent_name_taken(conn, account_id, name):
                raise ValidationError(
                    f"Name '{name}' has already been taken", field="name", code="taken"
                )
            agent_id = agent_crud.insert_agent(conn, account_id, name, self._now(), system_prompt)
            return agent_crud.get_agent(conn, agent_id)

    def get_agent(self, agent_id: int) -> Optional[Agent]:
        with self._connect() as conn:
            return agent_crud.get_agent(conn, agent_id)

    def require_agent(self, agent_id: int) -> Agent:
        agent = self.get_agent(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    def list_agents(self, account_id: Optional[int] = None, active_only: bool = True) -> List[Agent]:
        with self._connect() as conn:
            return agent_crud.list_agents(conn, account_id, active_only)

    def update_agent_config(self, agent_id: int, field: str, value: Any, actor: Optional[Actor]) -> Tuple[Any, Agent]:
        """Write one agent config field with its audit record.

        Returns:
            (previous value, updated agent)

        Raises:
            NotFoundError: Unknown agent
            ValidationError: ``code="taken"`` when renaming onto an existing name
        """
        now = self._now()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            agent = agent_crud.get_agent(conn, agent_id)
            if agent is None:
                raise NotFoundError(f"Agent {agent_id} not found")
            if field == "name" and agent_crud.agent_name_taken(
                conn, agent.account_id, value, exclude_id=agent_id
            ):
                raise ValidationError(
                    f"Name '{value}' has already been taken", field="name", code="taken"
                )
            before = getattr(agent, field)
            agent_crud.update_agent_field(conn, agent_id, field, value)
            insert_audit(
                conn,
                "agent_config_update",
                actor,
                now,
                account_id=agent.account_id,
                agent_id=agent_id,
                subject_type="agent",
                subject_id=agent_id,
                data={"field": field, "before": before, "after": value},
            )
            return before, agent_crud.get_agent(conn, agent_id)

    def set_agent_active(self, agent_id: int, active: bool) -> bool:
        with self._connect() as conn:
            return agent_crud.update_agent_field(conn, agent_id, "active", 1 if active else 0)

    # === Chats & messages ===

    def create_chat(
        self,
        account_id: int,
        title: Optional[str] = None,
        group: bool = False,
        agent_ids: Optional[List[int]] = None,
    ) -> Chat:
        with self._connect() as conn:
            chat_id = conversations.insert_chat(conn, account_id, title, group, self._now())
            for agent_id in agent_ids or []:
                conversations.add_participant(conn, chat_id, agent_id)
            return conversations.get_chat(conn, chat_id)

    def get_chat(self, chat_id: int) -> Optional[Chat]:
        with self._connect() as conn:
            return conversations.get_chat(conn, chat_id)

    def add_participant(self, chat_id: int, agent_id: int) -> None:
        with self._connect() as conn:
            conversations.add_participant(conn, chat_id, agent_id)

    def participant_ids(self, chat_id: int) -> List[int]:
        with self._connect() as conn:
            return conversations.participant_ids(conn, chat_id)

    def set_active_whiteboard(self, chat_id: int, whiteboard_id: Optional[int]) -> bool:
        with self._connect() as conn:
            return conversations.set_active_whiteboard(conn, chat_id, whiteboard_id)

    def append_message(
        self,
        chat_id: int,
        content: str,
        author_name: str,
        *,
        agent_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> Message:
        with self._connect() as conn:
            message_id = conversations.insert_message(
                conn,
                chat_id,
                content,
                author_name,
                estimate_tokens(content),
                self._now(),
                agent_id=agent_id,
                user_id=user_id,
            )
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            return conversations.row_to_message(row)

    def messages_after(
        self, chat_id: int, after_id: Optional[int], up_to_id: Optional[int] = None
    ) -> List[Message]:
        with self._connect() as conn:
            return conversations.messages_after(conn, chat_id, after_id, up_to_id)

    def pending_message_stats(self, chat_id: int, after_id: Optional[int]):
        with self._connect() as conn:
            return conversations.pending_stats(conn, chat_id, after_id)

    # === Memories ===

    def insert_memory(
        self,
        agent_id: int,
        content: str,
        memory_type: str,
        *,
        constitutional: bool = False,
        created_at: Optional[str] = None,
    ) -> Memory:
        with self._connect() as conn:
            memory_id = memory_crud.insert_memory(
                conn, agent_id, content, memory_type, created_at or self._now(), constitutional
            )
            return memory_crud.get_memory(conn, memory_id)

    def get_memory(self, memory_id: int, agent_id: Optional[int] = None) -> Optional[Memory]:
        with self._connect() as conn:
            return memory_crud.get_memory(conn, memory_id, agent_id=agent_id)

    def list_memories(self, agent_id: int, **kwargs) -> List[Memory]:
        with self._connect() as conn:
            return memory_crud.list_memories(conn, agent_id, **kwargs)

    def search_memories(self, agent_id: int, query: str, **kwargs) -> List[Memory]:
        with self._connect() as conn:
            return memory_crud.search_memories(conn, agent_id, query, **kwargs)

    def kept_contents(self, agent_id: int) -> List[str]:
        with self._connect() as conn:
            return memory_crud.kept_contents(conn, agent_id)

    def agents_with_journal_since(self, cutoff: str) -> List[int]:
        with self._connect() as conn:
            return memory_crud.agents_with_journal_since(conn, cutoff)

    # === Consolidation state ===

    def get_consolidation_state(self, chat_id: int, agent_id: int) -> Optional[ConsolidationState]:
        with self._connect() as conn:
            return conversations.get_state(conn, chat_id, agent_id)

    def claim_consolidation(
        self, chat_id: int, agent_id: int, token: str, stale_before: Optional[str] = None
    ) -> bool:
        """Atomically move (chat, agent) from idle to pending under ``token``."""
        now = self._now()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conversations.ensure_state(conn, chat_id, agent_id, now)
            return conversations.try_claim(conn, chat_id, agent_id, token, now, stale_before)

    def start_consolidation(self, chat_id: int, agent_id: int, token: str) -> bool:
        with self._connect() as conn:
            return conversations.mark_running(conn, chat_id, agent_id, token, self._now())

    def complete_consolidation(
        self, chat_id: int, agent_id: int, token: str, watermark: Optional[int]
    ) -> bool:
        with self._connect() as conn:
            return conversations.mark_succeeded(
                conn, chat_id, agent_id, token, self._now(), watermark
            )

    def fail_consolidation(self, chat_id: int, agent_id: int, token: str, error: str) -> bool:
        with self._connect() as conn:
            return conversations.mark_failed(conn, chat_id, agent_id, token, self._now(), error)

    def stale_consolidation_candidates(self, idle_before: str) -> List[Tuple[int, int]]:
        with self._connect() as conn:
            return conversations.stale_candidates(conn, idle_before)

    # === Audit ===

    def log_audit(self, action: str, actor: Optional[Actor], **kwargs) -> int:
        return self.memory_ops.log_audit(action, actor, **kwargs)

    def get_audit_log(self, **kwargs) -> List[AuditRecord]:
        return self.memory_ops.get_audit_log(**kwargs)
