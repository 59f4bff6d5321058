"""SaveMemoryTool and SearchMemoryTool - direct memory access for an agent."""

import logging
from typing import Any, Dict, Optional

from helixmem.memory_store import MemoryStore
from helixmem.protocols import HelixError
from helixmem.tools.base import ToolContext, error_result, is_blank, ledger
from helixmem.types import VALID_MEMORY_TYPES, MemoryType

logger = logging.getLogger(__name__)

PERMANENT_NOTE = "This memory is now part of your permanent identity"


class SaveMemoryTool:
    """Save a memory. ``journal`` fades after the journal window; ``core`` is permanent."""

    name = "save_memory"

    def __init__(self, memories: MemoryStore, context: ToolContext):
        self._memories = memories
        self._context = context

    def execute(self, content: Optional[str] = None, memory_type: Optional[str] = None) -> Dict[str, Any]:
        if self._context.agent_id is None:
            return error_result("This tool only works with an agent context", error_code="context")
        if is_blank(content):
            return error_result("content is required", error_code="missing_param", required_param="content")
        if is_blank(memory_type):
            return error_result(
                "memory_type is required", error_code="missing_param", required_param="memory_type"
            )
        memory_type = memory_type.strip().lower()
        if memory_type not in VALID_MEMORY_TYPES:
            return error_result(
                "memory_type must be 'journal' or 'core'",
                error_code="invalid_type",
                allowed_fields=sorted(VALID_MEMORY_TYPES),
            )

        try:
            memory = self._memories.create(self._context.agent_id, content, memory_type)
        except HelixError as e:
            return error_result(
                f"Failed to save: {e}",
                error_code=e.code,
                required_param=getattr(e, "field", None) or "content",
            )

        result: Dict[str, Any] = {
            "type": "memory_saved",
            "id": memory.id,
            "memory_type": memory.memory_type,
            "content": memory.content,
        }
        if memory.memory_type == MemoryType.JOURNAL.value:
            expires = memory.created_at + self._memories.journal_window
            result["expires_around"] = expires.strftime("%Y-%m-%d")
        else:
            result["note"] = PERMANENT_NOTE
        return result


class SearchMemoryTool:
    """Substring search over the agent's kept memories."""

    name = "search_memory"

    def __init__(self, memories: MemoryStore, context: ToolContext):
        self._memories = memories
        self._context = context

    def execute(
        self, query: Optional[str] = None, memory_type: Optional[str] = None, limit: int = 50
    ) -> Dict[str, Any]:
        if self._context.agent_id is None:
            return error_result("This tool only works with an agent context", error_code="context")
        if is_blank(query):
            return error_result("query is required", error_code="missing_param", required_param="query")
        try:
            results = self._memories.search(
                self._context.agent_id, query, memory_type=memory_type or None, limit=limit
            )
        except HelixError as e:
            return error_result(str(e), error_code=e.code, allowed_fields=sorted(VALID_MEMORY_TYPES))
        return {
            "type": "search_results",
            "query": query.strip(),
            "count": len(results),
            "results": ledger(results),
        }
