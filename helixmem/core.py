"""
Helix - composition root for the memory and refinement engine.

Wires storage, the memory store, reflection, consolidation triggers,
whiteboards, refinement sessions and the agent tools around one clock
and one SQLite file. Most callers only need this class.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from helixmem.config import Settings, get_settings
from helixmem.inference import create_inference_service
from helixmem.logging_config import log_memory_saved, log_promotion
from helixmem.memory_store import MemoryStore
from helixmem.protocols import InferenceService, JobQueue, ModelProtocol, SafetyClassifier
from helixmem.reflection import MemoryReflectionEngine
from helixmem.refinement import RefinementOutcome, RefinementRunner
from helixmem.safety import ModelSafetyClassifier
from helixmem.storage import SQLiteStorage
from helixmem.tools import (
    RefinementTool,
    SaveMemoryTool,
    SearchMemoryTool,
    SelfAuthoringTool,
    ToolContext,
    WhiteboardTool,
)
from helixmem.triggers import (
    ConsolidationOutcome,
    ConsolidationTrigger,
    ThreadPoolJobQueue,
    TriggerConfig,
)
from helixmem.types import (
    Account,
    Actor,
    Agent,
    Chat,
    Memory,
    MemoryType,
    Message,
    User,
    format_datetime,
    now_utc,
)
from helixmem.whiteboards import WhiteboardStore

logger = logging.getLogger(__name__)


def trigger_config_from_settings(settings: Settings) -> TriggerConfig:
    return TriggerConfig(
        interval_hours=settings.consolidation_interval_hours,
        message_threshold=settings.consolidation_message_threshold,
        token_budget=settings.consolidation_token_budget,
        idle_hours=settings.idle_hours,
        stale_claim_minutes=settings.stale_claim_minutes,
    )


class Helix:
    """Main interface for helixmem.

    Examples:
        >>> helix = Helix("~/.helixmem/helixmem.db", model=AnthropicModel())
        >>> agent = helix.create_agent(account.id, "Ada")
        >>> chat = helix.create_chat(account.id, group=True, agent_ids=[agent.id])
        >>> helix.append_message(chat.id, "Morning!", "Sam", user_id=user.id)

    Args:
        db_path: SQLite file. Defaults to ``<data_dir>/helixmem.db``.
        model: Generation backend. Wrapped in a bounded InferenceService.
        inference: Pre-built inference service (overrides ``model``).
        safety: Classifier for self-authored prompts. Defaults to asking the model.
        job_queue: Where consolidation jobs run. Defaults to a thread pool.
        settings: Engine settings. Defaults to ``get_settings()``.
        clock: Callable returning the current aware datetime.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        *,
        model: Optional[ModelProtocol] = None,
        inference: Optional[InferenceService] = None,
        safety: Optional[SafetyClassifier] = None,
        job_queue: Optional[JobQueue] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.settings = settings or get_settings()
        self._clock = clock

        self.storage = SQLiteStorage(
            db_path or self.settings.resolved_db_path,
            now_fn=lambda: format_datetime(self._clock()),
        )
        self.memories = MemoryStore(
            self.storage, timedelta(days=self.settings.journal_window_days), clock
        )
        self.whiteboards = WhiteboardStore(self.storage.connect, self.storage.now)

        self.engine = MemoryReflectionEngine(
            self.storage, self.memories, chunk_target_tokens=self.settings.chunk_target_tokens
        )
        self.refinement = RefinementRunner(
            self.storage,
            self.memories,
            core_token_budget=self.settings.core_token_budget,
            default_threshold=self.settings.default_refinement_threshold,
            max_turns=self.settings.refinement_max_turns,
            interval=timedelta(days=self.settings.refinement_interval_days),
            clock=clock,
        )
        self._own_safety = safety is None
        self.safety = safety or ModelSafetyClassifier(None)

        self.job_queue = job_queue or ThreadPoolJobQueue(self.settings.worker_count)
        self.triggers = ConsolidationTrigger(
            self.storage,
            self.engine,
            self.job_queue,
            trigger_config_from_settings(self.settings),
            clock,
        )

        self.inference: Optional[InferenceService] = None
        if inference is not None:
            self.set_inference(inference)
        elif model is not None:
            self.set_model(model)

    # ---- model binding ----

    def set_model(self, model: Optional[ModelProtocol]) -> None:
        """Bind a generation backend, wrapped with the configured timeout."""
        inference = None
        if model is not None:
            inference = create_inference_service(model, self.settings.generation_timeout_seconds)
        self.set_inference(inference)

    def set_inference(self, inference: Optional[InferenceService]) -> None:
        self.inference = inference
        self.engine.set_inference(inference)
        self.refinement.set_inference(inference)
        if self._own_safety:
            self.safety = ModelSafetyClassifier(inference)

    def now(self) -> datetime:
        return self._clock()

    def close(self, wait: bool = True) -> None:
        self.job_queue.shutdown(wait=wait)
        self.storage.close()

    # ---- environment ----

    def create_account(self, name: str) -> Account:
        return self.storage.create_account(name)

    def create_user(self, account_id: int, name: str, email: Optional[str] = None) -> User:
        return self.storage.create_user(account_id, name, email)

    def create_agent(self, account_id: int, name: str, system_prompt: Optional[str] = None) -> Agent:
        return self.storage.create_agent(account_id, name, system_prompt)

    def get_agent(self, agent_id: int) -> Agent:
        return self.storage.require_agent(agent_id)

    def create_chat(
        self,
        account_id: int,
        title: Optional[str] = None,
        *,
        group: bool = False,
        agent_ids: Optional[List[int]] = None,
    ) -> Chat:
        return self.storage.create_chat(account_id, title, group, agent_ids)

    def append_message(
        self,
        chat_id: int,
        content: str,
        author_name: str,
        *,
        agent_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> Message:
        """Store a message, then let the trigger decide whether to consolidate.

        Returns immediately; extraction runs on the job queue.
        """
        message = self.storage.append_message(
            chat_id, content, author_name, agent_id=agent_id, user_id=user_id
        )
        self.triggers.on_message(chat_id)
        return message

    # ---- memories ----

    def save_memory(
        self,
        agent_id: int,
        content: str,
        memory_type=MemoryType.JOURNAL,
        *,
        constitutional: bool = False,
    ) -> Memory:
        memory = self.memories.create(agent_id, content, memory_type, constitutional=constitutional)
        log_memory_saved(agent_id, memory.id, memory.memory_type)
        return memory

    def search_memories(self, agent_id: int, query: str, **kwargs) -> List[Memory]:
        return self.memories.search(agent_id, query, **kwargs)

    def memory_context(self, agent_id: int) -> str:
        return self.memories.memory_context(agent_id)

    # ---- background work ----

    def consolidate(self, chat_id: int, agent_id: int) -> Optional[ConsolidationOutcome]:
        """Run extraction for (chat, agent) now, in this thread."""
        return self.triggers.run_now(chat_id, agent_id)

    def sweep_stale(self):
        return self.triggers.sweep_stale()

    def reflect_agent(self, agent_id: int) -> List[Memory]:
        """Let one agent promote journal entries to core memories."""
        promoted = self.engine.promote(agent_id)
        if promoted:
            log_promotion(agent_id, [m.id for m in promoted])
        return promoted

    def reflect_all(self) -> Dict[int, int]:
        return self.engine.promote_all()

    def refine_agent(self, agent_id: int) -> RefinementOutcome:
        return self.refinement.refine_agent(agent_id)

    def refine_all(self) -> List[RefinementOutcome]:
        return self.refinement.sweep()

    # ---- tools ----

    def tool_context(
        self, agent_id: Optional[int], chat_id: Optional[int] = None, actor: Optional[Actor] = None
    ) -> ToolContext:
        return ToolContext(agent_id=agent_id, chat_id=chat_id, actor=actor)

    def save_memory_tool(self, context: ToolContext) -> SaveMemoryTool:
        return SaveMemoryTool(self.memories, context)

    def search_memory_tool(self, context: ToolContext) -> SearchMemoryTool:
        return SearchMemoryTool(self.memories, context)

    def refinement_tool(
        self,
        context: ToolContext,
        session_id: Optional[str] = None,
        pre_session_mass: Optional[int] = None,
    ) -> RefinementTool:
        return RefinementTool(
            self.storage,
            self.memories,
            context,
            session_id=session_id,
            pre_session_mass=pre_session_mass,
            default_threshold=self.settings.default_refinement_threshold,
        )

    def self_authoring_tool(self, context: ToolContext) -> SelfAuthoringTool:
        return SelfAuthoringTool(
            self.storage,
            context,
            self.safety,
            default_threshold=self.settings.default_refinement_threshold,
        )

    def whiteboard_tool(self, context: ToolContext) -> WhiteboardTool:
        return WhiteboardTool(self.whiteboards, self.storage, context)
