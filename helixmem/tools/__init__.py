"""Agent-callable tools. Each returns a dict with a ``type`` discriminator."""

from helixmem.tools.base import ToolContext, error_result
from helixmem.tools.memory import SaveMemoryTool, SearchMemoryTool
from helixmem.tools.refinement import RefinementTool
from helixmem.tools.self_authoring import SelfAuthoringTool
from helixmem.tools.whiteboard import WhiteboardTool

__all__ = [
    "ToolContext",
    "error_result",
    "SaveMemoryTool",
    "SearchMemoryTool",
    "RefinementTool",
    "SelfAuthoringTool",
    "WhiteboardTool",
]
