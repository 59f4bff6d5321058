"""Auto-configure a model from settings and environment variables.

Zero-config model selection for the CLI and MCP server.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from helixmem.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Default models: cheap and fast, refinement sessions are long
_PROVIDER_DEFAULTS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
    "openrouter": "openrouter/auto",
}


def auto_configure_model(settings: Optional[Settings] = None) -> Optional[object]:
    """Auto-detect and create a model.

    Detection priority (when ``HELIXMEM_MODEL_PROVIDER`` is not set):
    1. ``CLAUDE_API_KEY`` or ``ANTHROPIC_API_KEY`` -> Anthropic
    2. ``OPENROUTER_API_KEY`` -> OpenRouter
    3. ``OPENAI_API_KEY`` -> OpenAI
    4. No key -> ``None`` (extraction and refinement are unavailable)

    Returns:
        A ModelProtocol instance, or None if no API keys are available.
    """
    settings = settings or get_settings()
    forced_provider = (settings.model_provider or "").lower().strip()
    model_override = (settings.model or "").strip() or None
    timeout = settings.generation_timeout_seconds

    if forced_provider:
        provider = forced_provider
    elif os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("CLAUDE_API_KEY"):
        provider = "anthropic"
    elif os.environ.get("OPENROUTER_API_KEY"):
        provider = "openrouter"
    elif os.environ.get("OPENAI_API_KEY"):
        provider = "openai"
    else:
        return None

    model_id = model_override or _PROVIDER_DEFAULTS.get(provider)

    if provider == "anthropic":
        from helixmem.models.anthropic import AnthropicModel

        model = AnthropicModel(model_id=model_id, timeout=timeout)
        logger.info("Auto-configured AnthropicModel (model=%s)", model_id)
        return model

    if provider == "openai":
        from helixmem.models.openai import OpenAIModel

        model = OpenAIModel(model_id=model_id, timeout=timeout)
        logger.info("Auto-configured OpenAIModel (model=%s)", model_id)
        return model

    if provider == "openrouter":
        from helixmem.models.openai import OPENROUTER_BASE_URL, OpenAIModel

        model = OpenAIModel(
            model_id=model_id,
            api_key=os.environ.get("OPENROUTER_API_KEY"),
            base_url=OPENROUTER_BASE_URL,
            timeout=timeout,
            provider="openrouter",
        )
        logger.info("Auto-configured OpenRouter model (model=%s)", model_id)
        return model

    logger.warning("Unknown model provider '%s', skipping auto-configuration", provider)
    return None
