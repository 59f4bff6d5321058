"""Tests for the bounded InferenceService wrapper."""

import threading
from unittest.mock import MagicMock

import pytest

from helixmem.inference import create_inference_service
from helixmem.protocols import GenerationError, ModelResponse, ToolDefinition


@pytest.fixture
def model():
    m = MagicMock()
    m.model_id = "test-model"
    m.generate.return_value = ModelResponse(content="hello")
    return m


class TestInferenceService:
    def test_infer_wraps_prompt(self, model):
        service = create_inference_service(model)
        assert service.infer("Say hi", system="Be nice") == "hello"

        messages = model.generate.call_args[0][0]
        assert [(m.role, m.content) for m in messages] == [("user", "Say hi")]
        assert model.generate.call_args[1] == {"tools": None, "system": "Be nice"}

    def test_converse_passes_tools(self, model):
        tool = ToolDefinition(name="t", description="d", input_schema={"type": "object"})
        service = create_inference_service(model)
        assert service.converse([], tools=[tool]).content == "hello"
        assert model.generate.call_args[1]["tools"] == [tool]

    def test_model_id(self, model):
        assert create_inference_service(model).model_id == "test-model"

    def test_timeout(self, model):
        release = threading.Event()

        def hang(*args, **kwargs):
            release.wait(5)
            return ModelResponse(content="too late")

        model.generate.side_effect = hang
        service = create_inference_service(model, timeout=0.05)
        try:
            with pytest.raises(GenerationError) as exc_info:
                service.infer("hi")
        finally:
            release.set()
        assert exc_info.value.error_class == "timeout"
        assert exc_info.value.transient

    def test_generation_error_passes_through(self, model):
        model.generate.side_effect = GenerationError("limited", error_class="rate_limit")
        with pytest.raises(GenerationError) as exc_info:
            create_inference_service(model).infer("hi")
        assert exc_info.value.error_class == "rate_limit"

    def test_other_errors_wrapped(self, model):
        model.generate.side_effect = ConnectionError("reset by peer")
        with pytest.raises(GenerationError) as exc_info:
            create_inference_service(model).infer("hi")
        assert exc_info.value.error_class == "unknown"
        assert "reset by peer" in str(exc_info.value)
