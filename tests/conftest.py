from datetime import datetime, timedelta, timezone

import pytest

from chat_session.application.completion_stream import CompletionStream
from chat_session.application.services.chat_session_service import ChatSessionService
from chat_session.domain.entities import Turn
from chat_session.infrastructure.repo.memory_history_repo import InMemoryHistoryRepository
from chat_session.settings import Settings

SYSTEM_PROMPT = "You are a test assistant."


@pytest.fixture
def anyio_backend():
    return 'asyncio'


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = dict(
            DEFAULT_MODEL="test-model",
            MAX_HISTORY_MESSAGES=100,
            ENABLE_STREAMING_RESPONSE=True,
            SYSTEM_PROMPT=SYSTEM_PROMPT,
            STORE_BACKEND="memory",
            LLM_PROVIDER="echo",
            COMMAND_TIMEOUT_S=5,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def repo():
    return InMemoryHistoryRepository()


@pytest.fixture
def make_service(make_settings, repo):
    """Build a ChatSessionService around `backend`; settings overrides pass through."""
    def _make(backend, *, history_repo=None, **overrides) -> ChatSessionService:
        settings = make_settings(**overrides)
        stream = CompletionStream.from_settings(backend, settings)
        return ChatSessionService(settings, history_repo or repo, stream)

    return _make


@pytest.fixture
def make_turns():
    """Turns with one-second spaced timestamps, in the given order."""
    def _make(*specs):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return [
            Turn(role=role, content=content, timestamp=base + timedelta(seconds=i))
            for i, (role, content) in enumerate(specs)
        ]

    return _make
