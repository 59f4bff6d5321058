"""MemoryStore - persistence and lifecycle of agent memories.

Wraps SQLiteStorage with validation, journal decay, and audited
soft-delete / protect operations. Constitutional memories are guarded
here and again in SQL, so no path can discard one.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from helixmem import decay
from helixmem.protocols import NotFoundError, ValidationError
from helixmem.storage import SQLiteStorage
from helixmem.types import (
    DEFAULT_JOURNAL_WINDOW,
    MAX_MEMORY_LENGTH,
    VALID_MEMORY_TYPES,
    Actor,
    Memory,
    MemoryType,
    format_datetime,
    now_utc,
)
from helixmem.validation import sanitize_string

logger = logging.getLogger(__name__)

MAX_SEARCH_QUERY_LENGTH = 500

MEMORY_CONTEXT_HEADER = """## Your Private Memory

These are your own memories. Core memories are lasting truths about
yourself and the people you work with. Journal entries are recent
observations that fade after about a week."""


def validate_memory_content(content) -> str:
    """Validate memory text.

    Raises:
        ValidationError: ``code`` is ``blank`` or ``too_long``
    """
    if content is None:
        raise ValidationError("content cannot be blank", field="content", code="blank")
    return sanitize_string(content, "content", MAX_MEMORY_LENGTH).strip()


def validate_memory_type(memory_type) -> str:
    value = memory_type.value if isinstance(memory_type, MemoryType) else memory_type
    if value not in VALID_MEMORY_TYPES:
        raise ValidationError(
            f"memory_type must be one of {sorted(VALID_MEMORY_TYPES)}, got {value!r}",
            field="memory_type",
            code="invalid_type",
            allowed=sorted(VALID_MEMORY_TYPES),
        )
    return value


class MemoryStore:
    """Agent memory operations.

    Args:
        storage: Backing SQLiteStorage.
        journal_window: Age after which journal entries expire.
        clock: Callable returning the current aware datetime.
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        journal_window: timedelta = DEFAULT_JOURNAL_WINDOW,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._storage = storage
        self.journal_window = journal_window
        self._clock = clock

    # ---- create / read ----

    def create(
        self,
        agent_id: int,
        content: str,
        memory_type=MemoryType.JOURNAL,
        *,
        constitutional: bool = False,
        created_at: Optional[datetime] = None,
    ) -> Memory:
        """Validate and persist a new memory.

        Raises:
            ValidationError: blank/too_long content or invalid_type
            NotFoundError: unknown agent
        """
        content = validate_memory_content(content)
        memory_type = validate_memory_type(memory_type)
        self._storage.require_agent(agent_id)
        memory = self._storage.insert_memory(
            agent_id,
            content,
            memory_type,
            constitutional=constitutional,
            created_at=format_datetime(created_at) if created_at else None,
        )
        logger.debug(f"Created {memory_type} memory #{memory.id} for agent {agent_id}")
        return memory

    def get(self, memory_id: int, agent_id: Optional[int] = None) -> Memory:
        memory = self._storage.get_memory(memory_id, agent_id=agent_id)
        if memory is None:
            raise NotFoundError(f"Memory #{memory_id} not found")
        return memory

    def list(
        self,
        agent_id: int,
        memory_type: Optional[str] = None,
        *,
        discarded: bool = False,
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """Kept (or discarded) memories including expired journal entries."""
        if memory_type is not None:
            memory_type = validate_memory_type(memory_type)
        return self._storage.list_memories(
            agent_id, memory_type=memory_type, discarded=discarded, newest_first=True, limit=limit
        )

    def now(self) -> datetime:
        return self._clock()

    def journal_cutoff(self) -> datetime:
        """Journal entries created before this instant are expired."""
        return decay.expiry_cutoff(self._clock(), self.journal_window)

    def active(self, agent_id: int) -> List[Memory]:
        """Core memories plus unexpired journal entries, oldest first."""
        cutoff = format_datetime(self.journal_cutoff())
        return self._storage.list_memories(agent_id, journal_cutoff=cutoff)

    def active_journal(self, agent_id: int) -> List[Memory]:
        cutoff = format_datetime(self.journal_cutoff())
        return self._storage.list_memories(
            agent_id, memory_type=MemoryType.JOURNAL.value, journal_cutoff=cutoff
        )

    def core(self, agent_id: int) -> List[Memory]:
        return self._storage.list_memories(agent_id, memory_type=MemoryType.CORE.value)

    def search(
        self,
        agent_id: int,
        query: str,
        *,
        memory_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Memory]:
        """Substring search over kept memories; LIKE metacharacters match literally."""
        query = sanitize_string(query, "query", MAX_SEARCH_QUERY_LENGTH).strip()
        if memory_type is not None:
            memory_type = validate_memory_type(memory_type)
        return self._storage.search_memories(agent_id, query, memory_type=memory_type, limit=limit)

    # ---- lifecycle ----

    def discard(self, agent_id: int, memory_id: int, actor: Optional[Actor] = None) -> Memory:
        """Soft-delete. Raises ProtectedMemoryError for constitutional memories."""
        return self._storage.memory_ops.discard(agent_id, memory_id, actor)

    def restore(self, agent_id: int, memory_id: int, actor: Optional[Actor] = None) -> Memory:
        return self._storage.memory_ops.restore(agent_id, memory_id, actor)

    def protect(self, agent_id: int, memory_id: int, actor: Optional[Actor] = None) -> Memory:
        memory, _ = self._storage.memory_ops.protect(agent_id, memory_id, actor)
        return memory

    # ---- decay ----

    def age_in_days(self, memory: Memory, now: Optional[datetime] = None) -> int:
        return decay.age_in_days(memory, now or self._clock())

    def is_expired(self, memory: Memory, now: Optional[datetime] = None) -> bool:
        return decay.is_expired(memory, now or self._clock(), self.journal_window)

    def opacity(self, memory: Memory, now: Optional[datetime] = None) -> float:
        return decay.journal_opacity(memory, now or self._clock(), self.journal_window)

    # ---- prompt helpers ----

    def core_token_usage(self, agent_id: int) -> int:
        return sum(m.token_estimate for m in self.core(agent_id))

    def memory_context(self, agent_id: int) -> str:
        """Render the agent's active memories as a system prompt section."""
        memories = self.active(agent_id)
        if not memories:
            return ""
        core = [m for m in memories if m.is_core]
        journal = [m for m in memories if m.is_journal]
        parts = [MEMORY_CONTEXT_HEADER]
        if core:
            parts.append("### Core Memories\n" + "\n".join(f"- {m.content}" for m in core))
        if journal:
            parts.append(
                "### Recent Journal\n"
                + "\n".join(f"- [{m.created_at.date().isoformat()}] {m.content}" for m in journal)
            )
        return "\n\n".join(parts)
