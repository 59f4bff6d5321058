"""WhiteboardStore - shared, revisioned documents with optimistic concurrency.

Writers must send the revision they last read. A write against any
other revision is rejected with a ConflictError that carries the
current content, so the caller can merge and retry. Nothing blocks.
"""

import logging
import re
import sqlite3
from typing import Callable, List, Optional

from helixmem.protocols import ConflictError, NotFoundError, ValidationError
from helixmem.storage import conversations
from helixmem.storage import whiteboards_crud as crud
from helixmem.storage.memory_ops import insert_audit
from helixmem.types import Actor, Whiteboard
from helixmem.utils import parse_id
from helixmem.validation import coerce_int, sanitize_string

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_SUMMARY_LENGTH = 250
MAX_CONTENT_LENGTH = 100_000
MAX_RECOMMENDED_LENGTH = 10_000

CLEAR_REFS = ("", "none")

_GAP = re.compile(r"[-_\s]+")


def over_recommended_length(board: Whiteboard) -> bool:
    return len(board.content or "") > MAX_RECOMMENDED_LENGTH


def length_warning(board: Whiteboard) -> Optional[str]:
    if over_recommended_length(board):
        return f"Exceeds {MAX_RECOMMENDED_LENGTH} chars"
    return None


def _actor_columns(actor: Optional[Actor]):
    if actor is None:
        return None, None
    return actor.kind, actor.actor_id


class WhiteboardStore:
    """Account-scoped whiteboard operations.

    Args:
        connect_fn: Transaction context manager from SQLiteStorage.
        now_fn: Callable returning the current timestamp string.
    """

    def __init__(self, connect_fn: Callable, now_fn: Callable[[], str]):
        self._connect = connect_fn
        self._now = now_fn

    # ---- reads ----

    def get(self, board_id: int, account_id: Optional[int] = None) -> Whiteboard:
        with self._connect() as conn:
            board = crud.get_whiteboard(conn, board_id, account_id)
        if board is None:
            raise NotFoundError("Board not found")
        return board

    def list_active(self, account_id: int) -> List[Whiteboard]:
        with self._connect() as conn:
            return crud.list_whiteboards(conn, account_id, deleted=False)

    def list_deleted(self, account_id: int) -> List[Whiteboard]:
        with self._connect() as conn:
            return crud.list_whiteboards(conn, account_id, deleted=True)

    def resolve(self, account_id: int, ref, *, deleted: Optional[bool] = False) -> Whiteboard:
        """Find a board by id, exact name, or partial name.

        Args:
            ref: ``12``, ``"#12"``, ``"Project Notes"`` or ``"proj-notes"``.
            deleted: Which boards to search by name. ``None`` searches both.

        Raises:
            NotFoundError: Nothing matches
            ValidationError: ``code="ambiguous"`` when several partial names match
        """
        if ref is None or (isinstance(ref, str) and not ref.strip()):
            raise NotFoundError("Board not found")

        text = ref.strip() if isinstance(ref, str) else ref
        try:
            board_id = parse_id(text, "board_id")
        except ValueError:
            board_id = None

        states = [False, True] if deleted is None else [deleted]
        with self._connect() as conn:
            if board_id is not None:
                board = crud.get_whiteboard(conn, board_id, account_id)
                if board is not None and (deleted is None or board.deleted == deleted):
                    return board

            if not isinstance(text, str):
                raise NotFoundError("Board not found")

            for state in states:
                exact = crud.find_by_exact_name(conn, account_id, text, deleted=state)
                if exact:
                    return exact[0]

            tokens = [t for t in _GAP.split(text) if t]
            if not tokens:
                raise NotFoundError("Board not found")
            partial = []
            for state in states:
                partial = crud.find_by_partial_name(conn, account_id, tokens, deleted=state)
                if partial:
                    break

        if not partial:
            raise NotFoundError("Board not found")
        if len(partial) > 1:
            names = [b.name for b in partial]
            raise ValidationError(
                f"Ambiguous board reference '{text}'. Matches: {', '.join(names)}",
                field="board_id",
                code="ambiguous",
                allowed=names,
            )
        return partial[0]

    # ---- writes ----

    def create(
        self,
        account_id: int,
        name: str,
        summary: str,
        content: Optional[str],
        actor: Optional[Actor],
    ) -> Whiteboard:
        """Create a board at revision 1.

        Raises:
            ValidationError: Invalid fields, or ``code="taken"`` for a duplicate active name
        """
        name = sanitize_string(name, "name", MAX_NAME_LENGTH).strip()
        summary = sanitize_string(summary, "summary", MAX_SUMMARY_LENGTH).strip()
        content = sanitize_string(content, "content", MAX_CONTENT_LENGTH, required=False).strip()
        actor_type, actor_id = _actor_columns(actor)
        now = self._now()

        with self._connect() as conn:
            if crud.active_name_taken(conn, account_id, name):
                raise ValidationError(
                    f"Name '{name}' has already been taken", field="name", code="taken"
                )
            try:
                board_id = crud.insert_whiteboard(
                    conn, account_id, name, summary, content, now, actor_type, actor_id
                )
            except sqlite3.IntegrityError as e:
                raise ValidationError(
                    f"Name '{name}' has already been taken", field="name", code="taken"
                ) from e
            insert_audit(
                conn,
                "whiteboard_create",
                actor,
                now,
                account_id=account_id,
                subject_type="whiteboard",
                subject_id=board_id,
                data={"name": name},
            )
            board = crud.get_whiteboard(conn, board_id)
        logger.info(f"Created whiteboard #{board.id} '{board.name}'")
        return board

    def update(
        self,
        board_id: int,
        expected_revision,
        actor: Optional[Actor],
        *,
        content: Optional[str] = None,
        name: Optional[str] = None,
        summary: Optional[str] = None,
        account_id: Optional[int] = None,
    ) -> Whiteboard:
        """Compare-and-swap update.

        ``content=""`` clears the board; ``None`` leaves a field alone.

        Raises:
            NotFoundError: Unknown board
            ValidationError: Deleted board (``code="deleted"``), nothing to
                change, invalid fields, or a name collision
            ConflictError: ``expected_revision`` is stale
        """
        expected_revision = coerce_int(expected_revision, "expected_revision", min_val=1)
        if content is None and name is None and summary is None:
            raise ValidationError(
                "Provide name, summary, or content", field="content", code="required"
            )
        if content is not None:
            content = sanitize_string(content, "content", MAX_CONTENT_LENGTH, required=False).strip()
        if name is not None:
            name = sanitize_string(name, "name", MAX_NAME_LENGTH).strip()
        if summary is not None:
            summary = sanitize_string(summary, "summary", MAX_SUMMARY_LENGTH).strip()
        actor_type, actor_id = _actor_columns(actor)
        now = self._now()

        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            board = crud.get_whiteboard(conn, board_id, account_id)
            if board is None:
                raise NotFoundError("Board not found")
            if board.deleted:
                raise ValidationError(
                    "Cannot update deleted board - restore first", field="board_id", code="deleted"
                )
            if name is not None and crud.active_name_taken(
                conn, board.account_id, name, exclude_id=board.id
            ):
                raise ValidationError(
                    f"Name '{name}' has already been taken", field="name", code="taken"
                )

            swapped = crud.compare_and_swap(
                conn,
                board.id,
                expected_revision,
                now,
                actor_type,
                actor_id,
                content=content,
                name=name,
                summary=summary,
            )
            if not swapped:
                raise ConflictError(
                    f"Board was modified (expected revision {expected_revision}, "
                    f"current revision {board.revision}). Merge with the current content and retry.",
                    current_content=board.content,
                    current_revision=board.revision,
                )

            insert_audit(
                conn,
                "whiteboard_update",
                actor,
                now,
                account_id=board.account_id,
                subject_type="whiteboard",
                subject_id=board.id,
                data={
                    "from_revision": expected_revision,
                    "fields": [
                        f
                        for f, v in (("content", content), ("name", name), ("summary", summary))
                        if v is not None
                    ],
                },
            )
            return crud.get_whiteboard(conn, board.id)

    def soft_delete(
        self, board_id: int, actor: Optional[Actor] = None, account_id: Optional[int] = None
    ) -> Whiteboard:
        """Mark a board deleted and detach it from any chat using it."""
        now = self._now()
        with self._connect() as conn:
            board = crud.get_whiteboard(conn, board_id, account_id)
            if board is None:
                raise NotFoundError("Board not found")
            if not crud.mark_deleted(conn, board.id, now):
                raise ValidationError("Board already deleted", field="board_id", code="deleted")
            detached = conversations.clear_whiteboard_references(conn, board.id)
            insert_audit(
                conn,
                "whiteboard_delete",
                actor,
                now,
                account_id=board.account_id,
                subject_type="whiteboard",
                subject_id=board.id,
                data={"name": board.name, "detached_chats": detached},
            )
            return crud.get_whiteboard(conn, board.id)

    def restore(
        self, board_id: int, actor: Optional[Actor] = None, account_id: Optional[int] = None
    ) -> Whiteboard:
        """Undelete a board. Its name must still be free among active boards.

        Raises:
            ValidationError: Board is not deleted
            ConflictError: An active board took the name meanwhile
        """
        now = self._now()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            board = crud.get_whiteboard(conn, board_id, account_id)
            if board is None:
                raise NotFoundError("Board not found")
            if not board.deleted:
                raise ValidationError("Board is not deleted", field="board_id", code="not_deleted")
            if crud.active_name_taken(conn, board.account_id, board.name, exclude_id=board.id):
                raise ConflictError(f"Name '{board.name}' already in use")
            try:
                crud.clear_deleted(conn, board.id)
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"Name '{board.name}' already in use") from e
            insert_audit(
                conn,
                "whiteboard_restore",
                actor,
                now,
                account_id=board.account_id,
                subject_type="whiteboard",
                subject_id=board.id,
            )
            return crud.get_whiteboard(conn, board.id)

    def set_active(self, chat_id: int, ref, account_id: int) -> Optional[Whiteboard]:
        """Point a chat at a board. ``None``, blank or ``"none"`` clears it.

        Returns:
            The active board, or None when cleared.
        """
        if ref is None or (isinstance(ref, str) and ref.strip().lower() in CLEAR_REFS):
            with self._connect() as conn:
                conversations.set_active_whiteboard(conn, chat_id, None)
            return None

        board = self.resolve(account_id, ref, deleted=None)
        if board.deleted:
            raise ValidationError(
                "Cannot set deleted board as active", field="board_id", code="deleted"
            )
        with self._connect() as conn:
            conversations.set_active_whiteboard(conn, chat_id, board.id)
        return board
