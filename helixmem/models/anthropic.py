"""Anthropic messages API adapter.

The ``anthropic`` SDK is imported when a model is constructed, not when
this module is imported, so the package works without the extra.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from helixmem.models.errors import ProviderError, classify_sdk_error
from helixmem.protocols import ModelCapabilities, ModelMessage, ModelResponse, ToolDefinition

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


class AnthropicModelError(ProviderError):
    """Raised when the Anthropic SDK reports an error."""


class AnthropicModel:
    """ModelProtocol backed by Anthropic's messages API.

    Install with ``pip install helixmem[anthropic]``. The key comes from
    ``api_key`` or the ``CLAUDE_API_KEY`` / ``ANTHROPIC_API_KEY`` env vars.
    """

    provider = "anthropic"

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL,
        *,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
        timeout: Optional[float] = None,
    ) -> None:
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "AnthropicModel needs the 'anthropic' package: pip install helixmem[anthropic]"
            ) from None

        key = api_key or os.environ.get("CLAUDE_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError(
                "An API key is required. Pass api_key= or set CLAUDE_API_KEY / ANTHROPIC_API_KEY."
            )

        self._sdk = anthropic
        self._model_id = model_id
        self._max_tokens = max_tokens
        options: dict[str, Any] = {"api_key": key}
        if timeout is not None:
            options["timeout"] = timeout
        self._client = anthropic.Anthropic(**options)

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider=self.provider,
            context_window=200_000,
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
        api_messages, system = self._prepare_messages(messages, system)
        request: dict[str, Any] = {
            "model": self._model_id,
            "max_tokens": self._max_tokens,
            "messages": api_messages,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in tools
            ]

        try:
            reply = self._client.messages.create(**request)
        except Exception as exc:
            raise classify_sdk_error(
                self._sdk, exc, "Anthropic API error", AnthropicModelError
            ) from exc
        return self._to_model_response(reply)

    def _prepare_messages(
        self, messages: list[ModelMessage], system: Optional[str]
    ) -> tuple[list[dict[str, Any]], Optional[str]]:
        """Translate a refinement transcript into Anthropic turns.

        System messages are appended to the top-level ``system`` param.
        Consecutive tool results share one user turn of ``tool_result``
        blocks; assistant tool calls become ``tool_use`` blocks.
        """
        turns: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                text = msg.content if isinstance(msg.content, str) else str(msg.content)
                system = f"{system}\n\n{text}" if system else text
            elif msg.role == "tool":
                result = {"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content}
                last = turns[-1] if turns else None
                if last and last["role"] == "user" and isinstance(last["content"], list):
                    last["content"].append(result)
                else:
                    turns.append({"role": "user", "content": [result]})
            elif msg.role == "assistant" and msg.tool_calls:
                blocks = [{"type": "text", "text": msg.content}] if msg.content else []
                blocks.extend(
                    {"type": "tool_use", "id": c["id"], "name": c["name"], "input": c.get("input", {})}
                    for c in msg.tool_calls
                )
                turns.append({"role": "assistant", "content": blocks})
            else:
                turns.append({"role": msg.role, "content": msg.content})
        return turns, system

    @staticmethod
    def _to_model_response(reply: Any) -> ModelResponse:
        text = [b.text for b in reply.content if b.type == "text"]
        calls = [
            {"id": b.id, "name": b.name, "input": b.input}
            for b in reply.content
            if b.type == "tool_use"
        ]
        usage = {}
        if reply.usage:
            usage = {
                "input_tokens": reply.usage.input_tokens,
                "output_tokens": reply.usage.output_tokens,
            }
        return ModelResponse(
            content="".join(text),
            tool_calls=calls,
            usage=usage,
            stop_reason=reply.stop_reason,
            model_id=reply.model,
        )
