from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from adaptive_chat.db_helpers import create_session_factory
from adaptive_chat.learning_store import LearningContextStore
from adaptive_chat.learning_updater import LearningContextUpdater
from adaptive_chat.llm_client import ProviderReply
from adaptive_chat.settings import LearningLimits, Settings


class FakeProvider:
    """Records every call; replies with `text` or raises `error`."""

    def __init__(self, text: str = "Here is a clear answer.", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls = []

    def generate(self, prompt, history, api_key, params=None, user_message=None):
        self.calls.append({
            "prompt": prompt,
            "history": list(history),
            "api_key": api_key,
            "params": params,
            "user_message": user_message,
        })
        if self.error is not None:
            raise self.error
        return ProviderReply(text=self.text, usage={"total_token_count": 42})


@pytest.fixture
def session_factory():
    """In-memory SQLite shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return create_session_factory(engine)


@pytest.fixture
def limits():
    return LearningLimits()


@pytest.fixture
def settings(limits):
    return Settings(learning=limits)


@pytest.fixture
def learning_store(session_factory, limits):
    return LearningContextStore(session_factory, limits)


@pytest.fixture
def updater(learning_store, limits):
    return LearningContextUpdater(learning_store, limits)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def backend(session_factory, settings, fake_provider):
    from adaptive_chat.backend import Backend

    return Backend(
        session_factory=session_factory,
        settings=settings,
        provider_factory=lambda provider_id, settings=None: fake_provider,
    )


@pytest.fixture
def client(backend):
    from fastapi.testclient import TestClient
    from server import app, get_backend

    app.dependency_overrides[get_backend] = lambda: backend
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
