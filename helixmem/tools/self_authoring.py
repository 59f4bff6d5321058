"""SelfAuthoringTool - an agent views or rewrites its own configuration.

Prompt fields are gated: length limits, template placeholder checks for
the reflection templates, then a synchronous safety classification. A
change the classifier rejects (or cannot judge) is never written.
"""

import logging
from typing import Any, Dict, Optional

from helixmem.protocols import ContextError, SafetyClassifier, SafetyRejectionError
from helixmem.reflection import (
    EXTRACTION_PLACEHOLDERS,
    EXTRACTION_PROMPT,
    PROMOTION_PLACEHOLDERS,
    REFLECTION_PROMPT,
)
from helixmem.storage import SQLiteStorage
from helixmem.templates import validate_template
from helixmem.tools.base import ActionTool, ToolContext, is_blank
from helixmem.tools.refinement import DEFAULT_REFINEMENT_PROMPT, DEFAULT_REFINEMENT_THRESHOLD
from helixmem.validation import coerce_float, sanitize_string

logger = logging.getLogger(__name__)

FIELDS = (
    "name",
    "system_prompt",
    "reflection_prompt",
    "memory_reflection_prompt",
    "refinement_prompt",
    "refinement_threshold",
)

MAX_NAME_LENGTH = 100

PROMPT_LIMITS = {
    "system_prompt": 50_000,
    "reflection_prompt": 10_000,
    "memory_reflection_prompt": 10_000,
    "refinement_prompt": 10_000,
}

TEMPLATE_PLACEHOLDERS = {
    "reflection_prompt": EXTRACTION_PLACEHOLDERS,
    "memory_reflection_prompt": PROMOTION_PLACEHOLDERS,
}

CONTEXT_ERROR = "This tool only works in group conversations with an agent context"


class SelfAuthoringTool(ActionTool):
    """View or update your configuration. Actions: view, update."""

    name = "agent_config"
    ACTIONS = ("view", "update")
    FIELDS = FIELDS

    def __init__(
        self,
        storage: SQLiteStorage,
        context: ToolContext,
        safety: Optional[SafetyClassifier] = None,
        default_threshold: float = DEFAULT_REFINEMENT_THRESHOLD,
    ):
        self._storage = storage
        self._context = context
        self._safety = safety
        self.defaults = {
            "reflection_prompt": EXTRACTION_PROMPT,
            "memory_reflection_prompt": REFLECTION_PROMPT,
            "refinement_prompt": DEFAULT_REFINEMENT_PROMPT,
            "refinement_threshold": default_threshold,
        }

    def execute(self, action: str = None, field: str = None, value: Any = None, **_) -> Dict[str, Any]:
        try:
            self._check_context()
        except ContextError as e:
            return self.validation_error(str(e), error_code=e.code)

        if is_blank(action) or action not in self.ACTIONS:
            return self.validation_error(f"Invalid action '{action}'", error_code="invalid_action")
        if is_blank(field) or field not in self.FIELDS:
            return self.validation_error(f"Invalid field '{field}'", error_code="invalid_field")
        return super().execute(action, field=field, value=value)

    def _check_context(self) -> None:
        """An agent is required. A chat must be a group chat the agent is in.

        A human operator may act on an agent without a chat.
        """
        agent_id = self._context.agent_id
        if agent_id is None or self._storage.get_agent(agent_id) is None:
            raise ContextError(CONTEXT_ERROR)
        if self._context.chat_id is None:
            if not self._context.is_operator:
                raise ContextError(CONTEXT_ERROR)
            return
        chat = self._storage.get_chat(self._context.chat_id)
        if chat is None or not chat.group:
            raise ContextError(CONTEXT_ERROR)
        if agent_id not in self._storage.participant_ids(chat.id):
            raise ContextError(CONTEXT_ERROR)

    # ---- actions ----

    def _view_action(self, field: str, value: Any = None):
        agent = self._storage.require_agent(self._context.agent_id)
        actual = getattr(agent, field)
        default = self.defaults.get(field)
        is_default = is_blank(actual) and default is not None
        return {
            "type": "config",
            "action": "view",
            "field": field,
            "value": default if is_default else actual,
            "is_default": is_default,
            "agent": agent.name,
        }

    def _update_action(self, field: str, value: Any = None):
        if is_blank(value):
            return self.validation_error(
                "value required for update", error_code="missing_param", required_param="value"
            )

        value = self._clean(field, value)
        _, agent = self._storage.update_agent_config(
            self._context.agent_id, field, value, self._context.effective_actor
        )
        logger.info(f"Agent {agent.id} updated {field}")
        return {
            "type": "config",
            "action": "update",
            "field": field,
            "value": getattr(agent, field),
            "agent": agent.name,
        }

    def _clean(self, field: str, value: Any) -> Any:
        """Validate a new value. Raises ValidationError or SafetyRejectionError."""
        if field == "refinement_threshold":
            return coerce_float(value, field, min_val=0.0, max_val=1.0)
        if field == "name":
            return sanitize_string(value, field, MAX_NAME_LENGTH).strip()

        text = sanitize_string(value, field, PROMPT_LIMITS[field]).strip()
        if field in TEMPLATE_PLACEHOLDERS:
            validate_template(text, TEMPLATE_PLACEHOLDERS[field])

        if self._safety is None:
            raise SafetyRejectionError("safety classifier unavailable", field=field)
        verdict = self._safety.classify(text, field=field)
        if not verdict.safe:
            logger.warning(f"Rejected unsafe {field} update for agent {self._context.agent_id}")
            raise SafetyRejectionError(verdict.reason or "unsafe content", field=field)
        return text
