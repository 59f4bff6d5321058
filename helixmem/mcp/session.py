"""Per-process MCP session: one Helix instance scoped to one agent."""

from dataclasses import dataclass, field
from typing import Optional

from helixmem.core import Helix
from helixmem.tools import RefinementTool, ToolContext


@dataclass
class MCPSession:
    helix: Helix
    context: ToolContext
    _refinement_tool: Optional[RefinementTool] = field(default=None, repr=False)

    @property
    def refinement_tool(self) -> RefinementTool:
        """One refinement session at a time, so stats accumulate until complete.

        A completed or rolled-back session is replaced by a fresh one that
        measures its retention floor from the current core mass.
        """
        tool = self._refinement_tool
        if tool is None or tool.completed or tool.terminated:
            mass = None
            if self.context.agent_id is not None:
                mass = self.helix.memories.core_token_usage(self.context.agent_id)
            self._refinement_tool = self.helix.refinement_tool(self.context, pre_session_mass=mass)
        return self._refinement_tool
