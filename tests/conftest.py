"""
Pytest fixtures and test configuration for helixmem tests.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from helixmem.config import Settings, get_settings
from helixmem.core import Helix
from helixmem.protocols import ModelResponse
from helixmem.safety import StaticSafetyClassifier
from helixmem.storage import SQLiteStorage
from helixmem.triggers import InlineJobQueue

START = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock. Call it for the current time, ``advance`` to move it."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def json_reply(payload) -> str:
    return json.dumps(payload)


def mock_inference(*replies, converse=None):
    """Inference double. ``infer`` returns ``replies`` in order; ``converse`` yields ModelResponses."""
    inference = Mock()
    inference.infer.side_effect = list(replies)
    inference.converse.side_effect = list(converse or [])
    return inference


def tool_call(call_id: str, **arguments):
    return {"id": call_id, "name": "refine_memory", "input": arguments}


def response(content: str = "", *calls) -> ModelResponse:
    return ModelResponse(content=content, tool_calls=list(calls))


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep logs and default databases inside the test's tmp dir."""
    monkeypatch.setenv("HELIXMEM_DATA_DIR", str(tmp_path / "home"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "home")


@pytest.fixture
def safety():
    return StaticSafetyClassifier(safe=True, reason="ok")


@pytest.fixture
def helix(tmp_path, settings, clock, safety):
    """Helix with a fixed clock, inline jobs and an always-safe classifier."""
    instance = Helix(
        tmp_path / "helix.db",
        settings=settings,
        job_queue=InlineJobQueue(),
        safety=safety,
        clock=clock,
    )
    yield instance
    instance.close()


@pytest.fixture
def storage(tmp_path):
    return SQLiteStorage(tmp_path / "storage.db")


@pytest.fixture
def account(helix):
    return helix.create_account("Acme")


@pytest.fixture
def user(helix, account):
    return helix.create_user(account.id, "Sam", "sam@example.com")


@pytest.fixture
def agent(helix, account):
    return helix.create_agent(account.id, "Ada", "You are Ada, a patient research assistant.")


@pytest.fixture
def group_chat(helix, account, agent):
    return helix.create_chat(account.id, "Planning", group=True, agent_ids=[agent.id])
