"""
helixmem protocol definitions.

Errors, model-facing data types, and the narrow interfaces the engine
depends on (models, inference, safety classification, job queues).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

# =============================================================================
# ERRORS
# =============================================================================


class HelixError(Exception):
    """Base for all helixmem errors."""

    code = "error"


class ValidationError(HelixError, ValueError):
    """Input failed validation. ``field`` names the offending input."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        code: str = "invalid",
        allowed: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.code = code
        self.allowed = allowed


class TemplateError(ValidationError):
    """A prompt template referenced an unknown or unfilled placeholder."""

    def __init__(self, message: str, *, placeholder: str, allowed: list[str]) -> None:
        super().__init__(message, field="template", code="bad_placeholder", allowed=allowed)
        self.placeholder = placeholder


class ProtectedMemoryError(HelixError):
    """Attempt to discard, consolidate or merge a constitutional memory."""

    code = "protected"

    def __init__(self, memory_ids: list[int]) -> None:
        ids = ", ".join(f"#{i}" for i in memory_ids)
        super().__init__(f"Memory {ids} is constitutional and cannot be removed or merged")
        self.memory_ids = memory_ids


class ConflictError(HelixError):
    """Optimistic concurrency or uniqueness conflict.

    For revision mismatches the current server state travels with the
    error so the caller can merge and retry.
    """

    code = "conflict"

    def __init__(
        self,
        message: str,
        *,
        current_content: Optional[str] = None,
        current_revision: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.current_content = current_content
        self.current_revision = current_revision


class NotFoundError(HelixError):
    code = "not_found"


class ContextError(HelixError):
    """Operation invoked without the context it needs (agent, group chat)."""

    code = "context"


class SafetyRejectionError(HelixError):
    """The safety classifier refused a prompt change."""

    code = "unsafe"

    def __init__(self, reason: str, *, field: Optional[str] = None) -> None:
        super().__init__(f"Safety check failed: {reason}")
        self.reason = reason
        self.field = field


class GenerationError(HelixError):
    """Model generation failed, timed out, or returned unusable output."""

    code = "generation_failed"

    def __init__(self, message: str, *, error_class: str = "unknown") -> None:
        super().__init__(message)
        self.error_class = error_class

    @property
    def transient(self) -> bool:
        return self.error_class in ("rate_limit", "timeout", "server")


class StorageError(HelixError):
    """Raised by storage on unexpected persistence failures."""

    code = "storage"


# =============================================================================
# MODEL TYPES
# =============================================================================


@dataclass
class ModelCapabilities:
    """What a model implementation can do."""

    model_id: str
    provider: str  # "anthropic", "openai"
    context_window: int
    max_output_tokens: int = 4096
    supports_tools: bool = False


@dataclass
class ModelMessage:
    """A message in a conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str | list[dict[str, Any]]
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None


@dataclass
class ModelResponse:
    """Complete response from a model."""

    content: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    stop_reason: Optional[str] = None
    model_id: Optional[str] = None


@dataclass
class ToolDefinition:
    """A tool that can be offered to the model."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Optional[Callable] = None


@dataclass
class SafetyVerdict:
    safe: bool
    reason: str = ""


# =============================================================================
# INTERFACES
# =============================================================================


@runtime_checkable
class ModelProtocol(Protocol):
    """Interface for a generation backend.

    Implementations: AnthropicModel, OpenAIModel.
    """

    @property
    def model_id(self) -> str: ...

    @property
    def capabilities(self) -> ModelCapabilities: ...

    def generate(
        self,
        messages: list[ModelMessage],
        *,
        tools: Optional[list[ToolDefinition]] = None,
        system: Optional[str] = None,
    ) -> ModelResponse:
        """Generate a complete response."""
        ...


@runtime_checkable
class InferenceService(Protocol):
    """Narrow interface the engine uses for generation.

    Implementations bound every call with a timeout and raise
    GenerationError on any failure.
    """

    def infer(self, prompt: str, *, system: Optional[str] = None) -> str:
        """Generate text from a prompt. Returns the response string."""
        ...

    def converse(
        self,
        messages: list[ModelMessage],
        *,
        tools: Optional[list[ToolDefinition]] = None,
        system: Optional[str] = None,
    ) -> ModelResponse:
        """Multi-turn generation with optional tool use."""
        ...


@runtime_checkable
class SafetyClassifier(Protocol):
    """Classifies agent-authored prompt text before it is persisted."""

    def classify(self, text: str, *, field: str) -> SafetyVerdict: ...


@runtime_checkable
class JobQueue(Protocol):
    """Where background work is submitted."""

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any: ...

    def shutdown(self, wait: bool = True) -> None: ...
