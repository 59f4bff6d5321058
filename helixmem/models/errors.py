"""Provider error classification shared by the SDK adapters."""

from __future__ import annotations

from types import ModuleType
from typing import Type

from helixmem.protocols import GenerationError

# (SDK exception attribute, error_class, message label), most specific first
SDK_ERROR_TYPES: tuple[tuple[str, str, str], ...] = (
    ("RateLimitError", "rate_limit", "rate limited"),
    ("AuthenticationError", "auth", "auth failed"),
    ("APITimeoutError", "timeout", "timeout"),
)


class ProviderError(GenerationError):
    """A generation error raised by a provider SDK."""

    def __init__(self, error_class: str, message: str) -> None:
        super().__init__(message, error_class=error_class)


def classify_sdk_error(
    sdk: ModuleType,
    exc: Exception,
    prefix: str,
    error_type: Type[ProviderError] = ProviderError,
) -> ProviderError:
    """Map an SDK exception onto an ``error_class``.

    Exception types are looked up on the SDK module at call time, so a
    missing attribute simply never matches. Anything carrying an HTTP
    status that is not otherwise recognised counts as a server error.
    """
    for attr, error_class, label in SDK_ERROR_TYPES:
        exc_type = getattr(sdk, attr, None)
        if exc_type is not None and isinstance(exc, exc_type):
            return error_type(error_class, f"{prefix}: {label}: {exc}")

    status_type = getattr(sdk, "APIStatusError", None)
    if status_type is not None and isinstance(exc, status_type):
        code = getattr(exc, "status_code", "?")
        return error_type("server", f"{prefix}: API error ({code}): {exc}")

    return error_type("unknown", f"{prefix}: {exc}")
