"""Refinement sessions - scheduled memory curation driven by the agent itself.

An agent with core memories that has not refined within the refinement
interval is asked whether it wants to refine. If it answers YES, it gets
the RefinementTool and a ledger of its core memories, and works through them in a bounded tool-use loop until it
calls ``complete`` or stops calling tools. The session is rolled back if
its core token mass falls below the agent's retention threshold.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from helixmem.memory_store import MemoryStore
from helixmem.protocols import GenerationError, InferenceService, ModelMessage, NotFoundError, ToolDefinition
from helixmem.storage import SQLiteStorage
from helixmem.tools.base import ToolContext, error_result
from helixmem.tools.refinement import (
    DEFAULT_REFINEMENT_PROMPT,
    DEFAULT_REFINEMENT_THRESHOLD,
    RefinementTool,
)
from helixmem.tools.schemas import REFINEMENT_SCHEMA
from helixmem.types import Agent, AgentActor, Memory, now_utc

logger = logging.getLogger(__name__)

CORE_TOKEN_BUDGET = 5_000
DEFAULT_MAX_TURNS = 20
REFINEMENT_INTERVAL = timedelta(days=7)

_CONSENT = re.compile(r"^YES\b", re.IGNORECASE)

REFINEMENT_TOOL_DESCRIPTION = (
    "Memory refinement tool. Actions: search, consolidate, update, delete, protect, complete."
)


def format_memory_ledger(memories: List[Memory]) -> str:
    lines = []
    for m in memories:
        flag = " [CONSTITUTIONAL]" if m.constitutional else ""
        day = m.created_at.strftime("%Y-%m-%d") if m.created_at else "unknown"
        lines.append(f"- #{m.id} ({day}, ~{m.token_estimate} tokens){flag}: {m.content}")
    return "\n".join(lines)


def format_status(count: int, usage: int, budget: int) -> str:
    if usage > budget:
        standing = f"Over budget by: {usage - budget} tokens"
    else:
        standing = "Within budget"
    return (
        f"- Core memories: {count}\n"
        f"- Token usage: {usage} tokens\n"
        f"- Token budget: {budget} tokens\n"
        f"- {standing}"
    )


@dataclass
class RefinementOutcome:
    agent_id: int
    status: str  # "skipped", "declined", "completed", "rolled_back", "incomplete", "failed"
    session_id: Optional[str] = None
    turns: int = 0
    stats: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None


class RefinementRunner:
    """Runs consent-gated refinement sessions.

    Args:
        storage: Backing storage.
        memories: MemoryStore for core memories and the memory context.
        inference: Bounded inference service; None disables sessions.
        core_token_budget: Token budget for an agent's core memories.
        default_threshold: Share of the pre-session core token mass a
            session must keep, for agents without their own threshold.
        max_turns: Upper bound on tool-use round trips per session.
        interval: Minimum time between an agent's refinement sessions.
        clock: Callable returning the current aware datetime.
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        memories: MemoryStore,
        inference: Optional[InferenceService] = None,
        *,
        core_token_budget: int = CORE_TOKEN_BUDGET,
        default_threshold: float = DEFAULT_REFINEMENT_THRESHOLD,
        max_turns: int = DEFAULT_MAX_TURNS,
        interval: timedelta = REFINEMENT_INTERVAL,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._storage = storage
        self._memories = memories
        self._inference = inference
        self.core_token_budget = core_token_budget
        self.default_threshold = default_threshold
        self.max_turns = max_turns
        self.interval = interval
        self._clock = clock

    def set_inference(self, inference: Optional[InferenceService]) -> None:
        self._inference = inference

    # ---- scheduling ----

    def needs_refinement(self, agent: Agent) -> bool:
        """Due when the agent has core memories and has not refined within the interval."""
        if not self._memories.core(agent.id):
            return False
        if agent.last_refinement_at is None:
            return True
        return self._clock() - agent.last_refinement_at >= self.interval

    # ---- prompts ----

    def build_consent_prompt(self, agent: Agent, core: List[Memory], usage: int) -> str:
        return f"""{self._memories.memory_context(agent.id)}

# Memory Refinement Request

A scheduled memory refinement session is about to run. Before it begins, you are being asked whether you consent to this session.

## Current Status
{format_status(len(core), usage, self.core_token_budget)}

Memory refinement will review your core memories to de-duplicate entries and tighten phrasing. It does NOT summarize, compress, or delete memories unless they are exact duplicates. Constitutional memories are never touched. Completing with zero operations is a valid and good outcome.

Do you want to run memory refinement now? Reply with **YES** or **NO** as the first word of your response. You may briefly explain your reasoning after."""

    def build_refinement_prompt(self, agent: Agent, core: List[Memory], usage: int) -> str:
        instructions = agent.refinement_prompt or DEFAULT_REFINEMENT_PROMPT
        return f"""# Memory Refinement Session

You are reviewing your own core memories. This is de-duplication, not compression.

{instructions}

## Current Status
{format_status(len(core), usage, self.core_token_budget)}

## Your Core Memory Ledger
{format_memory_ledger(core)}

Review your memories. De-duplicate exact duplicates. Tighten phrasing within individual memories if possible. When done, call complete with a brief summary. Doing nothing is fine."""

    # ---- session ----

    def _require_inference(self) -> InferenceService:
        if self._inference is None:
            raise GenerationError("No model bound; refinement requires inference", error_class="unavailable")
        return self._inference

    def consents(self, agent: Agent, core: List[Memory], usage: int) -> bool:
        answer = self._require_inference().infer(
            self.build_consent_prompt(agent, core, usage), system=agent.system_prompt
        )
        answer = (answer or "").strip()
        consented = bool(_CONSENT.match(answer))
        logger.info(
            f"[Refinement] Agent {agent.id} ({agent.name}) consent: "
            f"{'YES' if consented else 'NO'} - {answer[:200]}"
        )
        return consented

    def refine_agent(self, agent_id: int) -> RefinementOutcome:
        """Run one consent-gated session for an agent.

        Raises:
            NotFoundError: Unknown agent
            GenerationError: The model failed; work done before the failure stays committed
        """
        agent = self._storage.require_agent(agent_id)
        core = self._memories.core(agent_id)
        if not core:
            return RefinementOutcome(agent_id, "skipped")
        usage = sum(m.token_estimate for m in core)

        if not self.consents(agent, core, usage):
            return RefinementOutcome(agent_id, "declined")

        tool = RefinementTool(
            self._storage,
            self._memories,
            ToolContext(agent_id=agent_id, actor=AgentActor(agent_id=agent_id, name=agent.name)),
            pre_session_mass=usage,
            default_threshold=self.default_threshold,
        )
        definition = ToolDefinition(
            name=tool.name,
            description=REFINEMENT_TOOL_DESCRIPTION,
            input_schema=REFINEMENT_SCHEMA,
        )
        messages = [ModelMessage(role="user", content=self.build_refinement_prompt(agent, core, usage))]
        inference = self._require_inference()

        turns = 0
        while turns < self.max_turns and not (tool.completed or tool.terminated):
            turns += 1
            response = inference.converse(messages, tools=[definition], system=agent.system_prompt)
            if not response.tool_calls:
                break
            messages.append(
                ModelMessage(role="assistant", content=response.content, tool_calls=response.tool_calls)
            )
            for call in response.tool_calls:
                result = self._dispatch(tool, call)
                messages.append(
                    ModelMessage(
                        role="tool",
                        content=json.dumps(result, default=str),
                        tool_call_id=call.get("id"),
                    )
                )

        if tool.completed:
            status = "completed"
        elif tool.terminated:
            status = "rolled_back"
        else:
            status = "incomplete"
        logger.info(f"[Refinement] Agent {agent.id} ({agent.name}) {status}: {tool.stats}")
        return RefinementOutcome(
            agent_id, status, session_id=tool.session_id, turns=turns, stats=dict(tool.stats)
        )

    @staticmethod
    def _dispatch(tool: RefinementTool, call: Dict[str, Any]) -> Dict[str, Any]:
        if call.get("name") != tool.name:
            return error_result(
                f"Unknown tool '{call.get('name')}'",
                error_code="unknown_tool",
                allowed_actions=tool.ACTIONS,
            )
        arguments = call.get("input") or {}
        if not isinstance(arguments, dict):
            arguments = {}
        params = {k: v for k, v in arguments.items() if not k.startswith("_")}
        return tool.execute(**params)

    def sweep(self) -> List[RefinementOutcome]:
        """Refine every active agent that is due. Failures are logged per agent."""
        logger.info("[Refinement] Sweep starting")
        outcomes = []
        for agent in self._storage.list_agents(active_only=True):
            try:
                if not self.needs_refinement(agent):
                    continue
                logger.info(f"[Refinement] Agent {agent.id} ({agent.name}) needs refinement")
                outcomes.append(self.refine_agent(agent.id))
            except (GenerationError, NotFoundError, ValueError) as e:
                logger.error(f"[Refinement] Failed for agent {agent.id}: {e}")
                outcomes.append(RefinementOutcome(agent.id, "failed", error=str(e)))
        logger.info("[Refinement] Sweep complete")
        return outcomes
