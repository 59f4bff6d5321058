"""RefinementTool - lets an agent (or operator) curate its memories.

A refinement session searches the agent's kept memories, merges
near-duplicates, tightens wording, drops what no longer matters and
protects what must never be lost. Each mutation commits together with
an audit record stamped with the session id.

Two guards bound a session:

- at most ``MAX_MUTATIONS`` successful update/delete/consolidate calls
- when the session knows its ``pre_session_mass``, core token usage must
  stay at or above ``refinement_threshold`` times that mass. Falling below
  it (after any mutation, or at ``complete``) rolls back every change made
  in the session and terminates it.
"""

import logging
import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from helixmem.logging_config import log_refinement
from helixmem.memory_store import MemoryStore, validate_memory_content
from helixmem.protocols import ValidationError
from helixmem.storage import SQLiteStorage
from helixmem.tools.base import ActionTool, ToolContext, is_blank, ledger
from helixmem.utils import parse_id, parse_id_list

logger = logging.getLogger(__name__)

MAX_SUMMARY_LENGTH = 2000
MAX_MUTATIONS = 10

DEFAULT_REFINEMENT_THRESHOLD = 0.90

DEFAULT_REFINEMENT_PROMPT = """Guidelines for this session:
- Merge memories that say the same thing into one, keeping every distinct detail.
- Tighten wordy phrasing inside a single memory without changing its meaning.
- Delete a memory only when it is an exact duplicate or has become plainly false.
- Protect memories that define who you are and must never be lost.
- Never summarize several different memories into a vaguer one.
- Constitutional memories are off limits; leave them as they are."""

_REVERTED_NOUNS = (
    ("delete", "deletion"),
    ("update", "update"),
    ("consolidate", "consolidation"),
    ("protect", "protection"),
)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


class RefinementTool(ActionTool):
    """Memory refinement tool. Actions: search, consolidate, update, delete, protect, complete."""

    name = "refine_memory"
    ACTIONS = ("search", "consolidate", "update", "delete", "protect", "complete")

    def __init__(
        self,
        storage: SQLiteStorage,
        memories: MemoryStore,
        context: ToolContext,
        session_id: Optional[str] = None,
        *,
        pre_session_mass: Optional[int] = None,
        default_threshold: float = DEFAULT_REFINEMENT_THRESHOLD,
    ):
        self._storage = storage
        self._memories = memories
        self._context = context
        self.session_id = session_id or str(uuid.uuid4())
        self.pre_session_mass = pre_session_mass
        self.default_threshold = default_threshold
        self.stats = {"consolidated": 0, "updated": 0, "deleted": 0, "protected": 0}
        self.mutations = 0
        self.completed = False
        self.terminated = False
        self.termination_reason: Optional[str] = None
        # (operation, memory_id, payload) in the order applied
        self._undo: List[Tuple[str, int, Any]] = []

    @property
    def _agent_id(self) -> int:
        return self._context.agent_id

    @property
    def _audit_extra(self) -> Dict[str, Any]:
        return {"session_id": self.session_id}

    def execute(self, action: str = None, **params: Any) -> Dict[str, Any]:
        if self._context.agent_id is None:
            return self.validation_error("This tool requires an agent context", error_code="context")
        if self.terminated:
            return self._terminated_error()
        logger.info(f"[Refinement] Agent {self._agent_id}: {action}")
        return super().execute(action, **params)

    # ---- session guards ----

    def retention_threshold(self) -> float:
        agent = self._storage.require_agent(self._agent_id)
        if agent.refinement_threshold is None:
            return self.default_threshold
        return agent.refinement_threshold

    def _cap_error(self) -> Optional[Dict[str, Any]]:
        if self.mutations < MAX_MUTATIONS:
            return None
        return self.validation_error(
            f"Hard cap of {MAX_MUTATIONS} changes per session reached. "
            "Call complete to finish the session.",
            error_code="mutation_cap",
        )

    def _terminated_error(self) -> Dict[str, Any]:
        return self.validation_error(
            f"Refinement session terminated: {self.termination_reason}",
            error_code="terminated",
        )

    def _check_retention(self) -> Optional[Dict[str, int]]:
        """Roll the session back if core mass fell below the retention floor.

        Returns the reverted operation counts when a rollback happened.
        """
        if self.pre_session_mass is None:
            return None
        threshold = self.retention_threshold()
        current = self._memories.core_token_usage(self._agent_id)
        if current >= threshold * self.pre_session_mass:
            return None
        return self._rollback(threshold, current)

    def _rollback(self, threshold: float, current: int) -> Dict[str, int]:
        ops = Counter(operation for operation, _, _ in self._undo)
        reverted = {noun: ops[operation] for operation, noun in _REVERTED_NOUNS}
        reason = (
            f"core memory fell from {self.pre_session_mass} to {current} tokens, "
            f"below the {threshold:.0%} retention threshold"
        )
        summary = ", ".join(_plural(count, noun) for noun, count in reverted.items())
        self._storage.memory_ops.rollback_refinement(
            self._agent_id,
            self._undo,
            f"Refinement session rolled back: {reason}. Reverted {summary}.",
            self._context.effective_actor,
            data={
                "threshold": threshold,
                "pre_session_mass": self.pre_session_mass,
                "post_session_mass": current,
                "reverted": reverted,
                "stats": dict(self.stats),
                **self._audit_extra,
            },
        )
        self._undo = []
        self.terminated = True
        self.termination_reason = f"{reason}; all changes from this session were rolled back"
        logger.warning(
            f"[Refinement] Agent {self._agent_id} session {self.session_id} rolled back: {reason}"
        )
        return reverted

    def _after_mutation(self, result: Dict[str, Any]) -> Dict[str, Any]:
        if self._check_retention() is not None:
            return self._terminated_error()
        return result

    # ---- actions ----

    def _search_action(self, query: str = None, memory_type: str = None, limit: int = 50, **_):
        if is_blank(query):
            return self.param_error("query", "search")
        results = self._memories.search(
            self._agent_id, query, memory_type=memory_type or None, limit=limit
        )
        return {
            "type": "search_results",
            "query": query.strip(),
            "count": len(results),
            "results": ledger(results),
        }

    def _consolidate_action(self, ids=None, content: str = None, **_):
        if is_blank(ids) or ids == []:
            return self.param_error("ids", "consolidate")
        if is_blank(content):
            return self.param_error("content", "consolidate")
        capped = self._cap_error()
        if capped:
            return capped
        memory_ids = parse_id_list(ids, "ids")
        if len(memory_ids) < 2:
            return self.validation_error(
                "consolidate requires at least 2 memory IDs", error_code="too_few_ids"
            )
        content = validate_memory_content(content)

        result, sources = self._storage.memory_ops.consolidate(
            self._agent_id,
            memory_ids,
            content,
            self._context.effective_actor,
            action="memory_refinement_consolidate",
            extra=self._audit_extra,
        )
        source_ids = [m.id for m in sources]
        self.mutations += 1
        self._undo.append(("consolidate", result.id, source_ids))
        self.stats["consolidated"] += len(sources)
        log_refinement(self._agent_id, "consolidate", source_ids + [result.id])
        return self._after_mutation(
            {
                "type": "consolidated",
                "id": result.id,
                "merged_ids": source_ids,
                "merged_count": len(sources),
                "memory_type": result.memory_type,
                "new_content": result.content,
            }
        )

    def _update_action(self, id=None, content: str = None, **_):
        if is_blank(id):
            return self.param_error("id", "update")
        if is_blank(content):
            return self.param_error("content", "update")
        capped = self._cap_error()
        if capped:
            return capped
        memory_id = parse_id(id, "id")
        content = validate_memory_content(content)

        before, after = self._storage.memory_ops.update(
            self._agent_id,
            memory_id,
            content,
            self._context.effective_actor,
            action="memory_refinement_update",
            extra=self._audit_extra,
        )
        self.mutations += 1
        self._undo.append(("update", after.id, before.content))
        self.stats["updated"] += 1
        log_refinement(self._agent_id, "update", [after.id])
        return self._after_mutation({"type": "updated", "id": after.id, "content": after.content})

    def _delete_action(self, id=None, **_):
        if is_blank(id):
            return self.param_error("id", "delete")
        capped = self._cap_error()
        if capped:
            return capped
        memory_id = parse_id(id, "id")
        memory = self._storage.memory_ops.discard(
            self._agent_id,
            memory_id,
            self._context.effective_actor,
            action="memory_refinement_delete",
            extra=self._audit_extra,
        )
        self.mutations += 1
        self._undo.append(("delete", memory.id, None))
        self.stats["deleted"] += 1
        log_refinement(self._agent_id, "delete", [memory.id])
        return self._after_mutation({"type": "deleted", "id": memory.id})

    def _protect_action(self, id=None, **_):
        if is_blank(id):
            return self.param_error("id", "protect")
        memory_id = parse_id(id, "id")
        memory, changed = self._storage.memory_ops.protect(
            self._agent_id,
            memory_id,
            self._context.effective_actor,
            action="memory_refinement_protect",
            extra=self._audit_extra,
        )
        if changed:
            self._undo.append(("protect", memory.id, None))
            self.stats["protected"] += 1
            log_refinement(self._agent_id, "protect", [memory.id])
        return self._after_mutation({"type": "protected", "id": memory.id, "content": memory.content})

    def _complete_action(self, summary: str = None, **_):
        if is_blank(summary):
            return self.param_error("summary", "complete")
        summary = summary.strip()
        if len(summary) > MAX_SUMMARY_LENGTH:
            raise ValidationError(
                f"summary too long (max {MAX_SUMMARY_LENGTH} characters)",
                field="summary",
                code="too_long",
            )
        # Catches mass lost outside this tool too, e.g. a concurrent discard
        reverted = self._check_retention()
        if reverted is not None:
            return {
                "type": "refinement_rolled_back",
                "reason": self.termination_reason,
                "reverted": reverted,
                "stats": dict(self.stats),
            }
        self._storage.memory_ops.complete_refinement(
            self._agent_id,
            summary,
            self._context.effective_actor,
            stats=dict(self.stats),
            extra=self._audit_extra,
        )
        self.completed = True
        logger.info(f"[Refinement] Agent {self._agent_id} completed session {self.session_id}")
        return {"type": "refinement_complete", "summary": summary, "stats": dict(self.stats)}
