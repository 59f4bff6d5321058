"""MemoryReflectionEngine - turns conversations and journals into memories.

Two modes:

- Extraction: a window of chat messages becomes new journal (and
  occasionally core) memories for one agent.
- Promotion: the agent reviews its active journal and picks entries to
  keep permanently as core memories.

Both are all-or-nothing. Every model call must succeed and parse before
anything is written. A failure raises GenerationError and leaves the
store untouched.
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from helixmem.memory_store import MemoryStore
from helixmem.protocols import GenerationError, InferenceService, NotFoundError
from helixmem.storage import SQLiteStorage
from helixmem.templates import render_template
from helixmem.types import (
    MAX_MEMORY_LENGTH,
    SYSTEM,
    Agent,
    Memory,
    MemoryType,
    Message,
    estimate_tokens,
    format_datetime,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_TARGET_TOKENS = 100_000

EXTRACTION_PLACEHOLDERS = ("system_prompt", "existing_memories")
PROMOTION_PLACEHOLDERS = ("core_memories", "journal_entries")

NO_EXISTING_MEMORIES = "None yet."
NO_CORE_MEMORIES = "None yet - you're still forming your identity."

EXTRACTION_PROMPT = """You are looking back over a conversation you took part in and deciding what to remember.

Who you are:
%{system_prompt}

Your current core memories:
%{existing_memories}

Sort anything worth keeping into two kinds:

1. JOURNAL entries fade after about a week. Use them for:
   - facts you learned about the people or topics involved
   - promises or commitments you made
   - context you will need for work that is still going on

2. CORE entries are permanent. Use them sparingly, for:
   - beliefs or values you have decided to hold
   - relationships that now matter to you
   - lessons you do not want to relearn

Be selective. Routine back-and-forth is not worth remembering, and most
conversations need no core entries at all. Do not repeat memories you
already hold."""

JSON_FORMAT_INSTRUCTION = """Respond ONLY with valid JSON:
{"journal": ["memory 1", "memory 2"], "core": ["memory 1"]}

If nothing is worth remembering:
{"journal": [], "core": []}"""

REFLECTION_PROMPT = """You are reflecting on what you have experienced recently.

Below are your permanent core memories, then your numbered journal entries
from the past week. Journal entries fade unless you promote them.

Promote an entry only if it holds up as a lasting insight: something true
about yourself, the people you work with, or how you should operate, that
you would be worse off forgetting. Most entries should be left to fade, and
promoting nothing is a normal outcome.

## Your Core Memories (permanent)
%{core_memories}

## Recent Journal Entries (fade after a week)
%{journal_entries}

---

Respond ONLY with valid JSON listing the numbers of the entries to promote:

{"promote": [1, 3]}

If nothing should be promoted:
{"promote": []}"""


def content_hash(content: str) -> str:
    """Hash of whitespace-normalized, lowercased text for duplicate detection."""
    if not content:
        return ""
    normalized = " ".join(content.lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def parse_json_response(response: str) -> Any:
    """Parse a JSON reply, tolerating markdown code fences.

    Raises:
        GenerationError: If the reply is not valid JSON
    """
    text = (response or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Model returned invalid JSON: {e}", error_class="parse") from e


def _string_items(payload: Dict[str, Any], key: str) -> List[str]:
    value = payload.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise GenerationError(f"Expected '{key}' to be a list", error_class="parse")
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def format_existing_memories(contents: Sequence[str]) -> str:
    if not contents:
        return NO_EXISTING_MEMORIES
    return "\n".join(f"- {c}" for c in contents)


def format_core_memories(memories: Sequence[Memory]) -> str:
    if not memories:
        return NO_CORE_MEMORIES
    return "\n".join(f"{i}. {m.content}" for i, m in enumerate(memories, 1))


def format_journal_entries(memories: Sequence[Memory]) -> str:
    return "\n".join(
        f"{i}. [{m.created_at.strftime('%Y-%m-%d')}] {m.content}" for i, m in enumerate(memories, 1)
    )


def chunk_messages(messages: Sequence[Message], target_tokens: int) -> List[List[Message]]:
    """Split messages into chunks of roughly ``target_tokens``.

    A single oversized message still gets a chunk of its own.
    """
    chunks: List[List[Message]] = []
    current: List[Message] = []
    current_tokens = 0
    for msg in messages:
        msg_tokens = estimate_tokens(msg.as_transcript_line())
        if current and current_tokens + msg_tokens > target_tokens:
            chunks.append(current)
            current, current_tokens = [], 0
        current.append(msg)
        current_tokens += msg_tokens
    if current:
        chunks.append(current)
    return chunks


class MemoryReflectionEngine:
    """Extraction and promotion over an agent's memories.

    Args:
        storage: Backing storage (for transactional writes).
        memories: MemoryStore used for reads and decay rules.
        inference: Bounded inference service; None means no model is bound.
        chunk_target_tokens: Transcript budget per extraction call.
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        memories: MemoryStore,
        inference: Optional[InferenceService] = None,
        chunk_target_tokens: int = DEFAULT_CHUNK_TARGET_TOKENS,
    ) -> None:
        self._storage = storage
        self._memories = memories
        self._inference = inference
        self.chunk_target_tokens = chunk_target_tokens

    def set_inference(self, inference: Optional[InferenceService]) -> None:
        self._inference = inference

    def _infer(self, prompt: str) -> str:
        if self._inference is None:
            raise GenerationError("No model bound; reflection requires inference", error_class="unavailable")
        return self._inference.infer(prompt)

    # ---- Extraction ----

    def build_extraction_prompt(self, agent: Agent, existing_core: Sequence[str]) -> str:
        template = agent.reflection_prompt or EXTRACTION_PROMPT
        rendered = render_template(
            template,
            {
                "system_prompt": agent.system_prompt or f"You are {agent.name}.",
                "existing_memories": format_existing_memories(existing_core),
            },
        )
        return f"{rendered}\n\n{JSON_FORMAT_INSTRUCTION}"

    def extract(
        self, agent_id: int, messages: Sequence[Message], *, chat_id: Optional[int] = None
    ) -> List[Memory]:
        """Extract memories from a message window.

        Returns:
            The memories written (possibly empty).

        Raises:
            GenerationError: Any chunk failed; nothing was written
            TemplateError: The agent's reflection prompt is malformed
        """
        agent = self._storage.require_agent(agent_id)
        if not messages:
            return []

        core_context = [m.content for m in self._memories.core(agent_id)]
        seen = {content_hash(c) for c in self._storage.kept_contents(agent_id)}
        pending: List[tuple] = []

        for chunk in chunk_messages(messages, self.chunk_target_tokens):
            prompt = self.build_extraction_prompt(agent, core_context)
            transcript = "\n\n".join(m.as_transcript_line() for m in chunk)
            payload = parse_json_response(
                self._infer(f"{prompt}\n\n---\n\nConversation:\n\n{transcript}")
            )
            if not isinstance(payload, dict):
                raise GenerationError("Expected a JSON object with journal/core lists", error_class="parse")

            for memory_type in (MemoryType.JOURNAL.value, MemoryType.CORE.value):
                for content in _string_items(payload, memory_type):
                    if len(content) > MAX_MEMORY_LENGTH:
                        logger.warning(
                            f"Skipping extracted {memory_type} memory for agent {agent_id}: "
                            f"{len(content)} chars exceeds {MAX_MEMORY_LENGTH}"
                        )
                        continue
                    digest = content_hash(content)
                    if digest in seen:
                        continue
                    seen.add(digest)
                    pending.append((content, memory_type))
                    if memory_type == MemoryType.CORE.value:
                        core_context.append(content)

        created = self._storage.memory_ops.write_batch(
            agent_id,
            pending,
            SYSTEM,
            action="memory_extraction",
            extra={
                "chat_id": chat_id,
                "message_range": [messages[0].id, messages[-1].id],
            },
        )
        logger.info(
            f"Extracted {len(created)} memories for agent {agent_id}"
            + (f" from chat {chat_id}" if chat_id is not None else "")
        )
        return created

    # ---- Promotion ----

    def build_promotion_prompt(
        self, agent: Agent, core: Sequence[Memory], journal: Sequence[Memory]
    ) -> str:
        template = agent.memory_reflection_prompt or REFLECTION_PROMPT
        return render_template(
            template,
            {
                "core_memories": format_core_memories(core),
                "journal_entries": format_journal_entries(journal),
            },
        )

    def promote(self, agent_id: int) -> List[Memory]:
        """Let the agent promote active journal entries to core.

        Returns:
            The new core memories (possibly empty).

        Raises:
            GenerationError: Generation or parsing failed; nothing changed
        """
        agent = self._storage.require_agent(agent_id)
        journal = self._memories.active_journal(agent_id)
        if not journal:
            return []
        core = self._memories.core(agent_id)

        payload = parse_json_response(self._infer(self.build_promotion_prompt(agent, core, journal)))
        if not isinstance(payload, dict):
            raise GenerationError("Expected a JSON object with a promote list", error_class="parse")
        indices = payload.get("promote", [])
        if indices is None:
            indices = []
        if not isinstance(indices, list):
            raise GenerationError("Expected 'promote' to be a list", error_class="parse")

        selected: List[int] = []
        for raw in indices:
            try:
                index = int(raw)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-integer promote index {raw!r}")
                continue
            if 1 <= index <= len(journal) and journal[index - 1].id not in selected:
                selected.append(journal[index - 1].id)

        if not selected:
            return []

        promoted = self._storage.memory_ops.promote(agent_id, selected, SYSTEM)
        logger.info(f"Agent {agent_id} promoted {len(promoted)} journal entries to core")
        return promoted

    def promote_all(self) -> Dict[int, int]:
        """Run promotion for every agent with active journal entries.

        Failures are logged per agent and do not stop the sweep.
        """
        cutoff = format_datetime(self._memories.journal_cutoff())
        results: Dict[int, int] = {}
        for agent_id in self._storage.agents_with_journal_since(cutoff):
            try:
                results[agent_id] = len(self.promote(agent_id))
            except (GenerationError, NotFoundError, ValueError) as e:
                logger.error(f"Memory promotion failed for agent {agent_id}: {e}")
        return results
