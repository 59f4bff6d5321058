"""OpenAI chat completions adapter.

Also serves OpenAI-compatible routers: pass ``base_url`` (for example
``OPENROUTER_BASE_URL``) and a ``provider`` label. The ``openai`` SDK is
imported when a model is constructed.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

from helixmem.models.errors import ProviderError, classify_sdk_error
from helixmem.protocols import ModelCapabilities, ModelMessage, ModelResponse, ToolDefinition

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenAIModelError(ProviderError):
    """Raised when the OpenAI SDK reports an error."""


class OpenAIModel:
    """ModelProtocol backed by the chat completions API."""

    def __init__(
        self,
        model_id: str = "gpt-4o-mini",
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        timeout: Optional[float] = None,
        provider: str = "openai",
    ) -> None:
        try:
            import openai
        except ImportError:
            raise ImportError(
                "OpenAIModel needs the 'openai' package: pip install helixmem[openai]"
            ) from None

        key = api_key or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError("An API key is required. Pass api_key= or set OPENAI_API_KEY.")

        self._sdk = openai
        self._model_id = model_id
        self._max_tokens = max_tokens
        self.provider = provider
        options: dict[str, Any] = {"api_key": key}
        if base_url:
            options["base_url"] = base_url
        if timeout is not None:
            options["timeout"] = timeout
        self._client = openai.OpenAI(**options)

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider=self.provider,
            context_window=128_000,
            max_output_tokens=self._max_tokens,
            supports_tools=True,
        )

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        tools: Optional[list[ToolDefinition]] = None,
        system: Optional[str] = None,
    ) -> ModelResponse:
        request: dict[str, Any] = {
            "model": self._model_id,
            "max_tokens": self._max_tokens,
            "messages": self._prepare_messages(messages, system),
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in tools
            ]

        try:
            completion = self._client.chat.completions.create(**request)
        except Exception as exc:
            logger.debug(f"{self.provider} completion failed: {exc}", exc_info=True)
            raise classify_sdk_error(
                self._sdk, exc, f"{self.provider} API error", OpenAIModelError
            ) from exc
        return self._to_model_response(completion)

    def _prepare_messages(
        self, messages: list[ModelMessage], system: Optional[str]
    ) -> list[dict[str, Any]]:
        """System prompt first, then each message with its tool call wiring."""
        out: list[dict[str, Any]] = [{"role": "system", "content": system}] if system else []
        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.tool_call_id:
                entry["tool_call_id"] = msg.tool_call_id
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": c["id"],
                        "type": "function",
                        "function": {"name": c["name"], "arguments": json.dumps(c.get("input", {}))},
                    }
                    for c in msg.tool_calls
                ]
            out.append(entry)
        return out

    def _to_model_response(self, completion: Any) -> ModelResponse:
        choice = completion.choices[0]
        calls = [
            {
                "id": tc.id,
                "name": tc.function.name,
                "input": self._parse_tool_call_input(tc.function.arguments),
            }
            for tc in (choice.message.tool_calls or [])
        ]
        usage = {}
        if completion.usage:
            usage = {
                "input_tokens": completion.usage.prompt_tokens,
                "output_tokens": completion.usage.completion_tokens,
            }
        return ModelResponse(
            content=choice.message.content or "",
            tool_calls=calls,
            usage=usage,
            stop_reason=choice.finish_reason,
            model_id=completion.model,
        )

    @staticmethod
    def _parse_tool_call_input(arguments: Any) -> dict[str, Any]:
        """Decode tool-call arguments, always returning a dict.

        Routers sometimes send malformed or non-object JSON. The result then
        carries ``_parse_error`` so the refinement tool answers with a
        missing-parameter error instead of the session crashing.
        """
        if isinstance(arguments, dict):
            return arguments
        if not isinstance(arguments, str):
            return {"_raw": str(arguments), "_parse_error": "arguments_not_string"}
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError:
            return {"_raw": arguments, "_parse_error": "invalid_json"}
        if not isinstance(parsed, dict):
            return {"_value": parsed, "_parse_error": "arguments_not_object"}
        return parsed
