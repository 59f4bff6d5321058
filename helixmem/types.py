"""Core data types for helixmem.

Records are plain dataclasses. Storage converts SQLite rows into these
types; everything above storage works with them directly.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

# Characters-per-token heuristic shared by every estimate in the package
CHARS_PER_TOKEN = 4

MAX_MEMORY_LENGTH = 10_000
DEFAULT_JOURNAL_WINDOW = timedelta(days=7)


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_datetime(dt: datetime) -> str:
    """Serialize a datetime for storage.

    Always UTC with microseconds so stored strings sort lexically.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return format_datetime(now_utc())


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO datetime string."""
    if not s:
        return None
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def estimate_tokens(text: str) -> int:
    """Rough token estimate for budgeting prompts."""
    if not text:
        return 0
    return len(text) // CHARS_PER_TOKEN


# === Enums ===


class MemoryType(str, Enum):
    """Kind of memory. Journal entries expire, core entries do not."""

    CORE = "core"
    JOURNAL = "journal"


VALID_MEMORY_TYPES = frozenset(t.value for t in MemoryType)


class ConsolidationStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"


# === Actors ===


@dataclass(frozen=True)
class HumanActor:
    """A human user acting on a record."""

    user_id: int
    name: Optional[str] = None

    kind = "user"

    @property
    def actor_id(self) -> int:
        return self.user_id


@dataclass(frozen=True)
class AgentActor:
    """An agent acting on a record, e.g. during refinement."""

    agent_id: int
    name: Optional[str] = None

    kind = "agent"

    @property
    def actor_id(self) -> int:
        return self.agent_id


@dataclass(frozen=True)
class SystemActor:
    """Background jobs (extraction, promotion, sweeps)."""

    name: str = "system"

    kind = "system"

    @property
    def actor_id(self) -> None:
        return None


Actor = Union[HumanActor, AgentActor, SystemActor]
SYSTEM = SystemActor()


def actor_from_columns(kind: Optional[str], actor_id: Optional[int], name: Optional[str] = None):
    """Rebuild an actor from its stored (kind, id) pair."""
    if kind == HumanActor.kind and actor_id is not None:
        return HumanActor(user_id=actor_id, name=name)
    if kind == AgentActor.kind and actor_id is not None:
        return AgentActor(agent_id=actor_id, name=name)
    if kind == SystemActor.kind:
        return SYSTEM
    return None


# === Environment records ===


@dataclass
class Account:
    id: int
    name: str
    created_at: Optional[datetime] = None


@dataclass
class User:
    id: int
    account_id: int
    name: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Agent:
    """An AI persona with its own prompts and private memory."""

    id: int
    account_id: int
    name: str
    system_prompt: Optional[str] = None
    reflection_prompt: Optional[str] = None
    memory_reflection_prompt: Optional[str] = None
    refinement_prompt: Optional[str] = None
    refinement_threshold: Optional[float] = None
    last_refinement_at: Optional[datetime] = None
    active: bool = True
    created_at: Optional[datetime] = None


@dataclass
class Chat:
    id: int
    account_id: int
    title: Optional[str] = None
    group: bool = False
    active_whiteboard_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class Message:
    """A chat message. Ids are monotonic and double as the consolidation watermark."""

    id: int
    chat_id: int
    content: str
    author_name: str
    agent_id: Optional[int] = None
    user_id: Optional[int] = None
    token_count: int = 0
    created_at: Optional[datetime] = None

    def as_transcript_line(self) -> str:
        return f"[{self.author_name}]: {self.content}"


# === Memory ===


@dataclass
class Memory:
    """A single agent memory.

    Journal memories expire after the journal window; core memories are
    permanent. Constitutional memories can never be discarded or merged.
    """

    id: int
    agent_id: int
    content: str
    memory_type: str = MemoryType.JOURNAL.value
    constitutional: bool = False
    discarded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def kept(self) -> bool:
        return self.discarded_at is None

    @property
    def is_core(self) -> bool:
        return self.memory_type == MemoryType.CORE.value

    @property
    def is_journal(self) -> bool:
        return self.memory_type == MemoryType.JOURNAL.value

    @property
    def token_estimate(self) -> int:
        return estimate_tokens(self.content)

    def as_ledger_entry(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "memory_type": self.memory_type,
            "created_at": self.created_at.date().isoformat() if self.created_at else None,
            "tokens": self.token_estimate,
            "constitutional": self.constitutional,
        }


# === Consolidation ===


@dataclass
class ConsolidationState:
    """Per (chat, agent) consolidation bookkeeping."""

    chat_id: int
    agent_id: int
    status: str = ConsolidationStatus.IDLE.value
    claim_token: Optional[str] = None
    claimed_at: Optional[datetime] = None
    last_consolidated_at: Optional[datetime] = None
    last_consolidated_message_id: Optional[int] = None
    last_error: Optional[str] = None
    updated_at: Optional[datetime] = None


# === Whiteboards ===


@dataclass
class Whiteboard:
    """A shared, revisioned document scoped to an account."""

    id: int
    account_id: int
    name: str
    content: str = ""
    summary: str = ""
    revision: int = 1
    deleted_at: Optional[datetime] = None
    last_edited_at: Optional[datetime] = None
    last_edited_by: Optional[Actor] = None
    created_at: Optional[datetime] = None

    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def editor_name(self) -> Optional[str]:
        if self.last_edited_by is None:
            return None
        return self.last_edited_by.name


# === Audit ===


@dataclass
class AuditRecord:
    id: int
    action: str
    actor: Optional[Actor] = None
    account_id: Optional[int] = None
    agent_id: Optional[int] = None
    subject_type: Optional[str] = None
    subject_id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
