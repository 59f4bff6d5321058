"""WhiteboardTool - agent access to the account's shared whiteboards."""

import logging
from typing import Any, Dict, Optional

from helixmem.protocols import ContextError
from helixmem.storage import SQLiteStorage
from helixmem.tools.base import ActionTool, ToolContext, is_blank
from helixmem.types import Chat, Whiteboard, format_datetime
from helixmem.whiteboards import WhiteboardStore, length_warning, over_recommended_length

logger = logging.getLogger(__name__)

CONTEXT_ERROR = (
    "Requires an agent context, and a group conversation the agent takes part in "
    "when a conversation is given (set_active always needs one)"
)


def _iso(dt) -> Optional[str]:
    return format_datetime(dt) if dt else None


class WhiteboardTool(ActionTool):
    """Manage shared whiteboards. Updates must carry the revision last read."""

    name = "whiteboard"
    ACTIONS = ("create", "update", "get", "list", "delete", "restore", "list_deleted", "set_active")

    def __init__(self, boards: WhiteboardStore, storage: SQLiteStorage, context: ToolContext):
        self._boards = boards
        self._storage = storage
        self._context = context

    def execute(self, action: str = None, **params: Any) -> Dict[str, Any]:
        try:
            self._account_id = self._resolve_account()
        except ContextError as e:
            return self.validation_error(str(e), error_code=e.code)
        return super().execute(action, **params)

    def _resolve_account(self) -> int:
        agent_id = self._context.agent_id
        agent = self._storage.get_agent(agent_id) if agent_id is not None else None
        if agent is None:
            raise ContextError(CONTEXT_ERROR)
        if self._context.chat_id is not None:
            chat = self._chat()
            if chat is None or not chat.group or chat.account_id != agent.account_id:
                raise ContextError(CONTEXT_ERROR)
            if agent_id not in self._storage.participant_ids(chat.id):
                raise ContextError(CONTEXT_ERROR)
        return agent.account_id

    def _chat(self) -> Optional[Chat]:
        if self._context.chat_id is None:
            return None
        return self._storage.get_chat(self._context.chat_id)

    def _find(self, board_id, *, deleted: Optional[bool] = None) -> Whiteboard:
        return self._boards.resolve(self._account_id, board_id, deleted=deleted)

    @property
    def _actor(self):
        return self._context.effective_actor

    # ---- actions ----

    def _create_action(self, name: str = None, summary: str = None, content: str = None, **_):
        if is_blank(name):
            return self.param_error("name", "create")
        if is_blank(summary):
            return self.param_error("summary", "create")
        board = self._boards.create(self._account_id, name, summary, content, self._actor)
        result = {
            "type": "board_created",
            "board_id": board.id,
            "name": board.name,
            "summary": board.summary,
            "revision": board.revision,
            "content_length": len(board.content or ""),
        }
        warning = length_warning(board)
        if warning:
            result["warning"] = warning
        return result

    def _update_action(
        self,
        board_id=None,
        expected_revision=None,
        name: str = None,
        summary: str = None,
        content: str = None,
        **_,
    ):
        if is_blank(board_id):
            return self.param_error("board_id", "update")
        if is_blank(expected_revision):
            return self.param_error("expected_revision", "update")
        board = self._find(board_id)
        board = self._boards.update(
            board.id,
            expected_revision,
            self._actor,
            content=content,
            name=None if is_blank(name) else name,
            summary=None if is_blank(summary) else summary,
            account_id=self._account_id,
        )
        result = {
            "type": "board_updated",
            "board_id": board.id,
            "name": board.name,
            "revision": board.revision,
            "content_length": len(board.content or ""),
        }
        warning = length_warning(board)
        if warning:
            result["warning"] = warning
        return result

    def _get_action(self, board_id=None, **_):
        if is_blank(board_id):
            return self.param_error("board_id", "get")
        board = self._find(board_id)
        return {
            "type": "board",
            "board_id": board.id,
            "name": board.name,
            "summary": board.summary,
            "content": board.content,
            "revision": board.revision,
            "content_length": len(board.content or ""),
            "last_edited_at": _iso(board.last_edited_at),
            "last_edited_by": board.editor_name,
            "deleted": board.deleted,
        }

    def _list_action(self, **_):
        boards = [
            {
                "id": b.id,
                "name": b.name,
                "summary": b.summary,
                "length": len(b.content or ""),
                "revision": b.revision,
                "over_limit": over_recommended_length(b),
            }
            for b in self._boards.list_active(self._account_id)
        ]
        chat = self._chat()
        return {
            "type": "board_list",
            "count": len(boards),
            "boards": boards,
            "active_board_id": chat.active_whiteboard_id if chat else None,
        }

    def _delete_action(self, board_id=None, **_):
        if is_blank(board_id):
            return self.param_error("board_id", "delete")
        board = self._boards.soft_delete(
            self._find(board_id).id, self._actor, account_id=self._account_id
        )
        return {"type": "board_deleted", "board_id": board.id, "name": board.name}

    def _restore_action(self, board_id=None, **_):
        if is_blank(board_id):
            return self.param_error("board_id", "restore")
        target = self._find(board_id, deleted=True)
        board = self._boards.restore(target.id, self._actor, account_id=self._account_id)
        return {"type": "board_restored", "board_id": board.id, "name": board.name}

    def _list_deleted_action(self, **_):
        boards = [
            {
                "id": b.id,
                "name": b.name,
                "summary": b.summary,
                "deleted_at": _iso(b.deleted_at),
                "length": len(b.content or ""),
            }
            for b in self._boards.list_deleted(self._account_id)
        ]
        return {"type": "deleted_board_list", "count": len(boards), "boards": boards}

    def _set_active_action(self, board_id=None, **_):
        if self._context.chat_id is None or self._chat() is None:
            return self.validation_error(CONTEXT_ERROR, error_code="context")
        board = self._boards.set_active(self._context.chat_id, board_id, self._account_id)
        if board is None:
            return {"type": "active_board_cleared"}
        return {"type": "active_board_set", "board_id": board.id, "name": board.name}
