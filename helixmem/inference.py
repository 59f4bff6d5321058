"""InferenceService - bounded model access for the engine.

Wraps a ModelProtocol so every call has a wall-clock timeout and every
failure surfaces as GenerationError. Components never see the model's
own exception types.
"""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Optional

from helixmem.protocols import (
    GenerationError,
    InferenceService,
    ModelMessage,
    ModelProtocol,
    ModelResponse,
    ToolDefinition,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0


class _InferenceServiceImpl:
    """Concrete InferenceService wrapping a ModelProtocol."""

    def __init__(self, model: ModelProtocol, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._model = model
        self._timeout = timeout

    @property
    def model_id(self) -> str:
        return self._model.model_id

    def infer(self, prompt: str, *, system: Optional[str] = None) -> str:
        """Generate text by routing to the bound model."""
        messages = [ModelMessage(role="user", content=prompt)]
        return self.converse(messages, system=system).content

    def converse(
        self,
        messages: list[ModelMessage],
        *,
        tools: Optional[list[ToolDefinition]] = None,
        system: Optional[str] = None,
    ) -> ModelResponse:
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._model.generate, messages, tools=tools, system=system)
        try:
            return future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise GenerationError(
                f"Generation timed out after {self._timeout:g}s", error_class="timeout"
            ) from None
        except GenerationError:
            raise
        except Exception as exc:
            logger.debug(f"Model {self._model.model_id} failed: {exc}", exc_info=True)
            error_class = getattr(exc, "error_class", "unknown")
            raise GenerationError(f"Generation failed: {exc}", error_class=error_class) from exc
        finally:
            # Never block on a hung provider call
            executor.shutdown(wait=False)


def create_inference_service(
    model: ModelProtocol, timeout: float = DEFAULT_TIMEOUT_SECONDS
) -> InferenceService:
    """Create an InferenceService wrapping a model."""
    return _InferenceServiceImpl(model, timeout)  # type: ignore[return-value]
