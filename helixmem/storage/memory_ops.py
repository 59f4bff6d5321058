"""Transactional memory lifecycle operations for helixmem storage.

MemoryOps groups the multi-row mutations (consolidate, update, discard,
restore, protect, promote, extraction writes, refinement completion and
rollback) so that each one and its audit record commit or roll back
together.
Receives dependencies explicitly to avoid circular imports.
"""

import json
import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from helixmem.protocols import NotFoundError, ProtectedMemoryError
from helixmem.types import (
    Actor,
    AuditRecord,
    Memory,
    MemoryType,
    actor_from_columns,
    format_datetime,
    parse_datetime,
)

from . import memory_crud

logger = logging.getLogger(__name__)


def insert_audit(
    conn: sqlite3.Connection,
    action: str,
    actor: Optional[Actor],
    now: str,
    *,
    account_id: Optional[int] = None,
    agent_id: Optional[int] = None,
    subject_type: Optional[str] = None,
    subject_id: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
) -> int:
    """Append one audit row using the caller's connection."""
    cursor = conn.execute(
        """INSERT INTO audit_log
           (action, actor_type, actor_id, account_id, agent_id, subject_type, subject_id, data, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            action,
            actor.kind if actor is not None else None,
            actor.actor_id if actor is not None else None,
            account_id,
            agent_id,
            subject_type,
            subject_id,
            json.dumps(data, default=str) if data else None,
            now,
        ),
    )
    return cursor.lastrowid


def _snapshot(memory: Memory) -> Dict[str, Any]:
    return {
        "id": memory.id,
        "content": memory.content,
        "memory_type": memory.memory_type,
        "constitutional": memory.constitutional,
        "created_at": format_datetime(memory.created_at) if memory.created_at else None,
    }


class MemoryOps:
    """Memory lifecycle operations with audit.

    Args:
        connect_fn: Callable returning a DB connection context manager.
        now_fn: Callable returning current timestamp string.
    """

    def __init__(self, connect_fn: Callable, now_fn: Callable[[], str]):
        self._connect = connect_fn
        self._now = now_fn

    # ---- helpers ----

    def _require_kept(self, conn, agent_id: int, memory_id: int) -> Memory:
        memory = memory_crud.get_memory(conn, memory_id, agent_id=agent_id)
        if memory is None or not memory.kept:
            raise NotFoundError(f"Memory #{memory_id} not found")
        return memory

    def _raise_unchanged(self, conn, agent_id: int, memory_id: int) -> None:
        """A conditional UPDATE touched no rows; report what the row looks like now."""
        current = self._require_kept(conn, agent_id, memory_id)
        if current.constitutional:
            raise ProtectedMemoryError([memory_id])
        raise NotFoundError(f"Memory #{memory_id} not found")

    # ---- single-memory operations ----

    def discard(
        self,
        agent_id: int,
        memory_id: int,
        actor: Optional[Actor],
        *,
        action: str = "memory_discard",
        extra: Optional[Dict[str, Any]] = None,
    ) -> Memory:
        """Soft-delete a memory.

        Raises:
            NotFoundError: If the memory is missing or already discarded
            ProtectedMemoryError: If the memory is constitutional
        """
        now = self._now()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            memory = self._require_kept(conn, agent_id, memory_id)
            if memory.constitutional:
                raise ProtectedMemoryError([memory.id])
            if memory_crud.mark_discarded(conn, [memory.id], now) == 0:
                self._raise_unchanged(conn, agent_id, memory_id)
            insert_audit(
                conn,
                action,
                actor,
                now,
                agent_id=agent_id,
                subject_type="memory",
                subject_id=memory.id,
                data={"before": _snapshot(memory), **(extra or {})},
            )
        memory.discarded_at = parse_datetime(now)
        return memory

    def restore(self, agent_id: int, memory_id: int, actor: Optional[Actor]) -> Memory:
        now = self._now()
        with self._connect() as conn:
            memory = memory_crud.get_memory(conn, memory_id, agent_id=agent_id)
            if memory is None:
                raise NotFoundError(f"Memory #{memory_id} not found")
            if memory_crud.clear_discarded(conn, memory_id):
                insert_audit(
                    conn,
                    "memory_restore",
                    actor,
                    now,
                    agent_id=agent_id,
                    subject_type="memory",
                    subject_id=memory_id,
                )
        memory.discarded_at = None
        return memory

    def protect(
        self,
        agent_id: int,
        memory_id: int,
        actor: Optional[Actor],
        *,
        action: str = "memory_protect",
        extra: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Memory, bool]:
        """Mark a memory constitutional. Idempotent; returns (memory, changed)."""
        now = self._now()
        with self._connect() as conn:
            memory = self._require_kept(conn, agent_id, memory_id)
            changed = memory_crud.set_constitutional(conn, memory_id)
            if changed:
                insert_audit(
                    conn,
                    action,
                    actor,
                    now,
                    agent_id=agent_id,
                    subject_type="memory",
                    subject_id=memory_id,
                    data={"content": memory.content, **(extra or {})},
                )
        memory.constitutional = True
        return memory, changed

    def update(
        self,
        agent_id: int,
        memory_id: int,
        content: str,
        actor: Optional[Actor],
        *,
        action: str = "memory_update",
        extra: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Memory, Memory]:
        """Replace a kept memory's content. Returns (before, after)."""
        now = self._now()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            before = self._require_kept(conn, agent_id, memory_id)
            if not memory_crud.update_content(conn, memory_id, content):
                self._raise_unchanged(conn, agent_id, memory_id)
            after = memory_crud.get_memory(conn, memory_id)
            insert_audit(
                conn,
                action,
                actor,
                now,
                agent_id=agent_id,
                subject_type="memory",
                subject_id=memory_id,
                data={"before": before.content, "after": content, **(extra or {})},
            )
        return before, after

    # ---- multi-memory operations ----

    def consolidate(
        self,
        agent_id: int,
        memory_ids: Sequence[int],
        content: str,
        actor: Optional[Actor],
        *,
        action: str = "memory_consolidate",
        extra: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Memory, List[Memory]]:
        """Merge kept memories into one, discarding the sources.

        The result inherits the earliest source ``created_at``. Its type is
        the sources' common type, or core when they differ.

        Raises:
            NotFoundError: If any id is missing, discarded or foreign
            ProtectedMemoryError: If any source is constitutional
        """
        now = self._now()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            sources = memory_crud.get_kept_memories(conn, agent_id, memory_ids)
            found = {m.id for m in sources}
            missing = [i for i in memory_ids if i not in found]
            if missing:
                raise NotFoundError(
                    "Memories not found: " + ", ".join(f"#{i}" for i in missing)
                )
            protected = [m.id for m in sources if m.constitutional]
            if protected:
                raise ProtectedMemoryError(protected)

            types = {m.memory_type for m in sources}
            memory_type = types.pop() if len(types) == 1 else MemoryType.CORE.value
            earliest = min(sources, key=lambda m: m.created_at)
            created_at = format_datetime(earliest.created_at)

            new_id = memory_crud.insert_memory(conn, agent_id, content, memory_type, created_at)
            memory_crud.mark_discarded(conn, [m.id for m in sources], now)
            insert_audit(
                conn,
                action,
                actor,
                now,
                agent_id=agent_id,
                subject_type="memory",
                subject_id=new_id,
                data={
                    "merged": [_snapshot(m) for m in sources],
                    "result": {"id": new_id, "content": content, "memory_type": memory_type},
                    **(extra or {}),
                },
            )
            result = memory_crud.get_memory(conn, new_id)
        return result, sources

    def promote(self, agent_id: int, journal_ids: Sequence[int], actor: Optional[Actor]) -> List[Memory]:
        """Copy journal entries to core (keeping created_at) and discard the originals."""
        now = self._now()
        promoted: List[Memory] = []
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            sources = memory_crud.get_kept_memories(conn, agent_id, journal_ids)
            sources = [m for m in sources if m.is_journal]
            pairs = []
            for source in sources:
                new_id = memory_crud.insert_memory(
                    conn,
                    agent_id,
                    source.content,
                    MemoryType.CORE.value,
                    format_datetime(source.created_at),
                )
                pairs.append({"journal_id": source.id, "core_id": new_id})
                promoted.append(memory_crud.get_memory(conn, new_id))
            memory_crud.mark_discarded(conn, [m.id for m in sources], now)
            if pairs:
                insert_audit(
                    conn,
                    "memory_promotion",
                    actor,
                    now,
                    agent_id=agent_id,
                    subject_type="agent",
                    subject_id=agent_id,
                    data={"promoted": pairs},
                )
        return promoted

    def write_batch(
        self,
        agent_id: int,
        items: Sequence[Tuple[str, str]],
        actor: Optional[Actor],
        *,
        action: str = "memory_extraction",
        extra: Optional[Dict[str, Any]] = None,
    ) -> List[Memory]:
        """Insert (content, memory_type) pairs in a single transaction."""
        now = self._now()
        created: List[Memory] = []
        with self._connect() as conn:
            for content, memory_type in items:
                new_id = memory_crud.insert_memory(conn, agent_id, content, memory_type, now)
                created.append(memory_crud.get_memory(conn, new_id))
            if created:
                insert_audit(
                    conn,
                    action,
                    actor,
                    now,
                    agent_id=agent_id,
                    subject_type="agent",
                    subject_id=agent_id,
                    data={"memory_ids": [m.id for m in created], **(extra or {})},
                )
        return created

    def complete_refinement(
        self,
        agent_id: int,
        summary: str,
        actor: Optional[Actor],
        *,
        stats: Optional[Dict[str, int]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Memory:
        """Stamp last_refinement_at and journal a summary of the session."""
        now = self._now()
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE agents SET last_refinement_at = ? WHERE id = ?", (now, agent_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Agent {agent_id} not found")
            journal_id = memory_crud.insert_memory(
                conn, agent_id, f"Refinement session: {summary}", MemoryType.JOURNAL.value, now
            )
            insert_audit(
                conn,
                "memory_refinement_complete",
                actor,
                now,
                agent_id=agent_id,
                subject_type="agent",
                subject_id=agent_id,
                data={"summary": summary, "stats": stats or {}, **(extra or {})},
            )
            return memory_crud.get_memory(conn, journal_id)

    def rollback_refinement(
        self,
        agent_id: int,
        undo_log: Sequence[Tuple[str, int, Any]],
        journal: str,
        actor: Optional[Actor],
        *,
        data: Optional[Dict[str, Any]] = None,
    ) -> Memory:
        """Revert a refinement session's mutations in one transaction.

        ``undo_log`` holds ``(operation, memory_id, payload)`` entries in the
        order they were applied:

        - ``("delete", id, None)`` restores the memory
        - ``("update", id, before_content)`` puts the old content back
        - ``("consolidate", new_id, source_ids)`` discards the merged memory
          and restores its sources
        - ``("protect", id, None)`` clears the constitutional flag

        Entries are undone newest first. The session still counts as a
        refinement run: last_refinement_at is stamped, the journal entry is
        written and a ``memory_refinement_rollback`` audit row is added.
        """
        now = self._now()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            for operation, memory_id, payload in reversed(list(undo_log)):
                if operation == "delete":
                    memory_crud.clear_discarded(conn, memory_id)
                elif operation == "update":
                    memory_crud.update_content(conn, memory_id, payload)
                elif operation == "consolidate":
                    memory_crud.clear_constitutional(conn, memory_id)
                    memory_crud.mark_discarded(conn, [memory_id], now)
                    for source_id in payload:
                        memory_crud.clear_discarded(conn, source_id)
                elif operation == "protect":
                    memory_crud.clear_constitutional(conn, memory_id)
                else:
                    raise ValueError(f"Unknown refinement operation: {operation}")

            cursor = conn.execute(
                "UPDATE agents SET last_refinement_at = ? WHERE id = ?", (now, agent_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Agent {agent_id} not found")
            journal_id = memory_crud.insert_memory(
                conn, agent_id, journal, MemoryType.JOURNAL.value, now
            )
            insert_audit(
                conn,
                "memory_refinement_rollback",
                actor,
                now,
                agent_id=agent_id,
                subject_type="agent",
                subject_id=agent_id,
                data=data,
            )
            return memory_crud.get_memory(conn, journal_id)

    # ---- audit ----

    def log_audit(
        self,
        action: str,
        actor: Optional[Actor],
        *,
        account_id: Optional[int] = None,
        agent_id: Optional[int] = None,
        subject_type: Optional[str] = None,
        subject_id: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Log a standalone audit entry. Returns its id."""
        now = self._now()
        with self._connect() as conn:
            return insert_audit(
                conn,
                action,
                actor,
                now,
                account_id=account_id,
                agent_id=agent_id,
                subject_type=subject_type,
                subject_id=subject_id,
                data=data,
            )

    def get_audit_log(
        self,
        *,
        agent_id: Optional[int] = None,
        action: Optional[str] = None,
        subject_type: Optional[str] = None,
        subject_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[AuditRecord]:
        """Get audit log entries, newest first."""
        conditions = ["1=1"]
        params: list = []

        if agent_id is not None:
            conditions.append("agent_id = ?")
            params.append(agent_id)
        if action:
            conditions.append("action = ?")
            params.append(action)
        if subject_type:
            conditions.append("subject_type = ?")
            params.append(subject_type)
        if subject_id is not None:
            conditions.append("subject_id = ?")
            params.append(subject_id)

        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(
                f"""SELECT * FROM audit_log
                   WHERE {' AND '.join(conditions)}
                   ORDER BY id DESC
                   LIMIT ?""",
                params,
            ).fetchall()

        return [
            AuditRecord(
                id=row["id"],
                action=row["action"],
                actor=actor_from_columns(row["actor_type"], row["actor_id"]),
                account_id=row["account_id"],
                agent_id=row["agent_id"],
                subject_type=row["subject_type"],
                subject_id=row["subject_id"],
                data=json.loads(row["data"]) if row["data"] else {},
                created_at=parse_datetime(row["created_at"]),
            )
            for row in rows
        ]
