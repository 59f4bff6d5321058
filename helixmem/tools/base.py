"""Shared plumbing for agent-callable tools.

Tools never raise across their boundary. Each one returns a dict with a
``type`` discriminator; failures come back as ``{"type": "error", ...}``
carrying enough guidance (allowed actions, allowed fields, the missing
parameter) for a model to correct itself on the next call.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from helixmem.protocols import (
    ConflictError,
    HelixError,
    ProtectedMemoryError,
    SafetyRejectionError,
    ValidationError,
)
from helixmem.types import Actor, AgentActor, HumanActor

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Who is calling a tool, and from where.

    ``agent_id`` is the agent whose memories or configuration the tool
    operates on. ``chat_id`` is set when the call comes from a
    conversation. ``actor`` defaults to the agent itself.
    """

    agent_id: Optional[int] = None
    chat_id: Optional[int] = None
    actor: Optional[Actor] = None

    @property
    def effective_actor(self) -> Optional[Actor]:
        if self.actor is not None:
            return self.actor
        if self.agent_id is not None:
            return AgentActor(agent_id=self.agent_id)
        return None

    @property
    def is_operator(self) -> bool:
        return isinstance(self.actor, HumanActor)


def error_result(
    message: str,
    *,
    error_code: str = "invalid",
    allowed_actions: Optional[Sequence[str]] = None,
    allowed_fields: Optional[Sequence[str]] = None,
    required_param: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    result: Dict[str, Any] = {"type": "error", "error": message, "error_code": error_code}
    if allowed_actions is not None:
        result["allowed_actions"] = list(allowed_actions)
    if allowed_fields is not None:
        result["allowed_fields"] = list(allowed_fields)
    if required_param is not None:
        result["required_param"] = required_param
    result.update(extra)
    return result


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ActionTool:
    """Dispatches ``execute(action, **params)`` to ``_<action>_action`` methods.

    Subclasses set ``ACTIONS`` and implement one method per action.
    """

    ACTIONS: Sequence[str] = ()
    FIELDS: Optional[Sequence[str]] = None

    def execute(self, action: str = None, **params: Any) -> Dict[str, Any]:
        if is_blank(action):
            return self.param_error("action", "execute")
        if action not in self.ACTIONS:
            return self.validation_error(f"Invalid action '{action}'", error_code="invalid_action")
        try:
            return getattr(self, f"_{action}_action")(**params)
        except HelixError as e:
            return self.error_from_exception(e)
        except ValueError as e:
            # parse_id and friends raise plain ValueError
            return self.validation_error(str(e))

    def validation_error(self, message: str, *, error_code: str = "invalid", **extra: Any):
        return error_result(
            message,
            error_code=error_code,
            allowed_actions=self.ACTIONS,
            allowed_fields=self.FIELDS,
            **extra,
        )

    def param_error(self, param: str, action: str) -> Dict[str, Any]:
        return error_result(
            f"{param} is required for {action}",
            error_code="missing_param",
            allowed_actions=self.ACTIONS,
            required_param=param,
        )

    def error_from_exception(self, e: HelixError) -> Dict[str, Any]:
        """Translate the engine's exception taxonomy into an error dict."""
        extra: Dict[str, Any] = {}
        if isinstance(e, ProtectedMemoryError):
            extra["memory_ids"] = e.memory_ids
        elif isinstance(e, ConflictError):
            if e.current_revision is not None:
                extra["current_revision"] = e.current_revision
                extra["current_content"] = e.current_content
        elif isinstance(e, SafetyRejectionError):
            if e.field:
                extra["field"] = e.field
        elif isinstance(e, ValidationError):
            if e.field:
                extra["field"] = e.field
            if e.allowed:
                extra["allowed"] = e.allowed
        logger.debug(f"{type(self).__name__} returned {e.code}: {e}")
        return self.validation_error(str(e), error_code=e.code, **extra)


def ledger(memories: List) -> List[Dict[str, Any]]:
    return [m.as_ledger_entry() for m in memories]
