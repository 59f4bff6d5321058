"""ConsolidationTrigger - decides when a conversation is reflected on.

After each appended message the trigger checks, for every agent in the
chat, whether enough has happened since that agent's last
consolidation. If so it atomically claims the (chat, agent) pair and
submits one extraction job to the worker pool. Concurrent callers race
on a conditional UPDATE, and only the winner enqueues.

State machine per (chat, agent)::

    idle --claim--> pending --start--> running --ok--> idle (watermark advances)
                                              \\--fail--> idle (watermark unchanged)
"""

import concurrent.futures
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from helixmem.logging_config import log_extraction
from helixmem.protocols import HelixError, JobQueue
from helixmem.reflection import MemoryReflectionEngine
from helixmem.storage import SQLiteStorage
from helixmem.types import format_datetime, now_utc, parse_datetime

logger = logging.getLogger(__name__)


@dataclass
class TriggerConfig:
    """Thresholds for consolidation. Crossing any one of them triggers."""

    enabled: bool = True
    interval_hours: float = 6.0
    message_threshold: int = 50
    token_budget: int = 20_000
    idle_hours: float = 6.0  # stale sweep
    stale_claim_minutes: int = 30


DEFAULT_TRIGGER_CONFIG = TriggerConfig()


def evaluate_triggers(
    config: TriggerConfig,
    messages_since: int,
    tokens_since: int = 0,
    hours_since_last: Optional[float] = None,
) -> bool:
    """Check if consolidation should run.

    Returns True if any trigger condition is met:
    - Quantity: messages since the watermark > message_threshold
    - Volume: tokens since the watermark > token_budget
    - Time: hours since last consolidation > interval_hours
    """
    if not config.enabled or messages_since <= 0:
        return False

    if messages_since > config.message_threshold:
        return True

    if tokens_since > config.token_budget:
        return True

    if hours_since_last is not None and hours_since_last > config.interval_hours:
        return True

    return False


def _hours_since(ts: Optional[datetime], now: datetime) -> Optional[float]:
    """Compute hours between a timestamp and now, handling naive datetimes."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (now - ts).total_seconds() / 3600.0


# =============================================================================
# Job queues
# =============================================================================


class ThreadPoolJobQueue:
    """Runs jobs on a bounded thread pool. The default worker pool."""

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="helixmem-job"
        )

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any):
        logger.debug(f"Submitting job {name}")
        return self._executor.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineJobQueue:
    """Runs jobs synchronously in the caller's thread (CLI sweeps, tests)."""

    def __init__(self) -> None:
        self.submitted: List[str] = []

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any):
        self.submitted.append(name)
        future: concurrent.futures.Future = concurrent.futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


# =============================================================================
# Trigger
# =============================================================================


@dataclass
class ConsolidationOutcome:
    chat_id: int
    agent_id: int
    status: str  # "consolidated", "nothing_to_do", "failed", "lost_claim"
    created: int = 0
    watermark: Optional[int] = None
    error: Optional[str] = None


class ConsolidationTrigger:
    """Threshold evaluation, claim, and job body for extraction.

    Args:
        storage: Backing storage holding consolidation state.
        engine: Reflection engine that performs extraction.
        queue: Where claimed jobs are submitted.
        config: Trigger thresholds.
        clock: Callable returning the current aware datetime.
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        engine: MemoryReflectionEngine,
        queue: JobQueue,
        config: Optional[TriggerConfig] = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._storage = storage
        self._engine = engine
        self._queue = queue
        self.config = config or TriggerConfig()
        self._clock = clock

    # ---- evaluation ----

    def should_consolidate(self, chat_id: int, agent_id: int) -> bool:
        state = self._storage.get_consolidation_state(chat_id, agent_id)
        watermark = state.last_consolidated_message_id if state else None
        count, tokens, oldest, _ = self._storage.pending_message_stats(chat_id, watermark)
        if count == 0:
            return False
        # Never consolidated: measure from the oldest unconsolidated message
        reference = state.last_consolidated_at if state and state.last_consolidated_at else None
        if reference is None:
            reference = parse_datetime(oldest)
        return evaluate_triggers(
            self.config, count, tokens, _hours_since(reference, self._clock())
        )

    def on_message(self, chat_id: int) -> List[Tuple[int, int]]:
        """Evaluate thresholds for every agent in a group chat after a message.

        Returns the (chat_id, agent_id) pairs for which a job was enqueued.
        """
        chat = self._storage.get_chat(chat_id)
        if chat is None or not chat.group or not self.config.enabled:
            return []
        enqueued = []
        for agent_id in self._storage.participant_ids(chat_id):
            if self.should_consolidate(chat_id, agent_id) and self.request(chat_id, agent_id):
                enqueued.append((chat_id, agent_id))
        return enqueued

    # ---- claim ----

    def _claim(self, chat_id: int, agent_id: int) -> Optional[str]:
        token = uuid.uuid4().hex
        stale_before = format_datetime(
            self._clock() - timedelta(minutes=self.config.stale_claim_minutes)
        )
        if self._storage.claim_consolidation(chat_id, agent_id, token, stale_before):
            return token
        return None

    def request(self, chat_id: int, agent_id: int) -> bool:
        """Claim (chat, agent) and enqueue one job. Idempotent.

        Returns True only for the caller that won the claim.
        """
        token = self._claim(chat_id, agent_id)
        if token is None:
            logger.debug(f"Consolidation already in flight for chat {chat_id} agent {agent_id}")
            return False
        logger.info(f"Enqueued consolidation for chat {chat_id} agent {agent_id}")
        self._queue.submit(
            f"consolidate:{chat_id}:{agent_id}", self.run, chat_id, agent_id, token
        )
        return True

    def run_now(self, chat_id: int, agent_id: int) -> Optional[ConsolidationOutcome]:
        """Claim and run in the caller's thread. None if another job holds the claim."""
        token = self._claim(chat_id, agent_id)
        if token is None:
            return None
        return self.run(chat_id, agent_id, token)

    # ---- job body ----

    def run(self, chat_id: int, agent_id: int, token: str) -> ConsolidationOutcome:
        """Execute a claimed consolidation. Never raises."""
        if not self._storage.start_consolidation(chat_id, agent_id, token):
            logger.warning(f"Lost consolidation claim for chat {chat_id} agent {agent_id}")
            return ConsolidationOutcome(chat_id, agent_id, "lost_claim")

        try:
            state = self._storage.get_consolidation_state(chat_id, agent_id)
            watermark = state.last_consolidated_message_id if state else None
            _, _, _, newest = self._storage.pending_message_stats(chat_id, watermark)
            messages = self._storage.messages_after(chat_id, watermark, up_to_id=newest)
            if not messages:
                self._storage.complete_consolidation(chat_id, agent_id, token, None)
                return ConsolidationOutcome(chat_id, agent_id, "nothing_to_do")

            created = self._engine.extract(agent_id, messages, chat_id=chat_id)
        except (HelixError, ValueError) as e:
            logger.error(
                f"Consolidation failed for chat {chat_id} agent {agent_id}: {e}"
            )
            self._storage.fail_consolidation(chat_id, agent_id, token, str(e))
            return ConsolidationOutcome(chat_id, agent_id, "failed", error=str(e))
        except Exception as e:
            logger.error(
                f"Unexpected consolidation error for chat {chat_id} agent {agent_id}: {e}",
                exc_info=True,
            )
            self._storage.fail_consolidation(chat_id, agent_id, token, f"{type(e).__name__}: {e}")
            return ConsolidationOutcome(chat_id, agent_id, "failed", error=str(e))

        last_id = messages[-1].id
        self._storage.complete_consolidation(chat_id, agent_id, token, last_id)
        log_extraction(agent_id, chat_id, len(created), last_id)
        return ConsolidationOutcome(
            chat_id, agent_id, "consolidated", created=len(created), watermark=last_id
        )

    # ---- stale sweep ----

    def sweep_stale(self, now: Optional[datetime] = None) -> List[Tuple[int, int]]:
        """Request consolidation for group chats that went quiet with unconsolidated messages."""
        now = now or self._clock()
        idle_before = format_datetime(now - timedelta(hours=self.config.idle_hours))
        enqueued = []
        for chat_id, agent_id in self._storage.stale_consolidation_candidates(idle_before):
            if self.request(chat_id, agent_id):
                enqueued.append((chat_id, agent_id))
        logger.info(f"Stale sweep enqueued {len(enqueued)} consolidation(s)")
        return enqueued

    def status(self, chat_id: int, agent_id: int) -> Dict[str, Any]:
        state = self._storage.get_consolidation_state(chat_id, agent_id)
        if state is None:
            return {"chat_id": chat_id, "agent_id": agent_id, "status": "idle"}
        return {
            "chat_id": chat_id,
            "agent_id": agent_id,
            "status": state.status,
            "last_consolidated_at": state.last_consolidated_at,
            "last_consolidated_message_id": state.last_consolidated_message_id,
            "last_error": state.last_error,
        }
