"""helixmem model implementations.

Concrete ModelProtocol implementations for supported providers.
"""

from __future__ import annotations

from helixmem.models.anthropic import AnthropicModel
from helixmem.models.openai import OpenAIModel

__all__ = ["AnthropicModel", "OpenAIModel"]
