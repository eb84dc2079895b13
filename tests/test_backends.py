"""
Tests for the Completion Port variants (LangChain remote, Ollama local).
"""
from typing import List, Optional

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from chat_session.application.utils.to_langchain_messages import to_langchain_messages
from chat_session.domain.ports.llm import CompletionRequest, PromptTurn
from chat_session.infrastructure.langchain.llm_adapter import LangchainCompletionBackend
from chat_session.infrastructure.ollama.ollama_client import OllamaCompletionBackend


def _request(*turns, model="m1"):
    return CompletionRequest(model=model, turns=tuple(PromptTurn(role=r, content=c) for r, c in turns))


def test_to_langchain_messages_maps_roles():
    msgs = to_langchain_messages([
        PromptTurn(role="system", content="be brief"),
        PromptTurn(role="user", content="hi"),
        PromptTurn(role="assistant", content="hello"),
        PromptTurn(role="narrator", content="?"),
    ])

    assert [type(m) for m in msgs] == [SystemMessage, HumanMessage, AIMessage, AIMessage]
    assert [m.content for m in msgs] == ["be brief", "hi", "hello", "?"]


@pytest.mark.anyio
async def test_langchain_backend_streams_chunks():
    model = GenericFakeChatModel(messages=iter([AIMessage(content="hello big world")]))
    backend = LangchainCompletionBackend(model)

    chunks = [c async for c in backend.astream(_request(("user", "hi")))]

    assert "".join(c.content_delta for c in chunks) == "hello big world"
    assert len([c for c in chunks if c.content_delta]) > 1
    assert {c.role for c in chunks} == {"assistant"}


@pytest.mark.anyio
async def test_langchain_backend_end_to_end(make_service):
    model = GenericFakeChatModel(messages=iter([AIMessage(content="streamed via langchain")]))
    service = make_service(LangchainCompletionBackend(model))
    session = await service.start_new_session("u1", "Chat")

    assert await service.send_message(session.id, "hi") == "streamed via langchain"


class RecordingChatModel(GenericFakeChatModel):
    seen_models: List[Optional[str]] = []

    async def _astream(self, messages, stop=None, run_manager=None, **kwargs):
        self.seen_models.append(kwargs.get("model"))
        for chunk in self._stream(messages, stop=stop, **kwargs):
            yield chunk


@pytest.mark.anyio
async def test_langchain_backend_uses_request_model():
    model = RecordingChatModel(messages=iter([AIMessage(content="ok")]))
    backend = LangchainCompletionBackend(model)

    chunks = [c async for c in backend.astream(_request(("user", "hi"), model="gpt-4o-mini"))]

    assert "".join(c.content_delta for c in chunks) == "ok"
    assert model.seen_models == ["gpt-4o-mini"]


class StubOllamaClient:
    def __init__(self, parts):
        self.parts = parts
        self.calls = []

    async def chat(self, **kwargs):
        self.calls.append(kwargs)

        async def _gen():
            for part in self.parts:
                yield part

        return _gen()


@pytest.mark.anyio
async def test_ollama_backend_streams_message_content():
    client = StubOllamaClient([
        {"message": {"role": "assistant", "content": "Hel"}},
        {"message": {"role": "assistant", "content": "lo"}},
        {"done": True},
    ])
    backend = OllamaCompletionBackend(client, options={"temperature": 0.1})

    chunks = [c async for c in backend.astream(_request(("system", "seed"), ("user", "hi"), model="gemma2:2b"))]

    assert [(c.role, c.content_delta) for c in chunks] == [("assistant", "Hel"), ("assistant", "lo")]
    call = client.calls[0]
    assert call["model"] == "gemma2:2b"
    assert call["stream"] is True
    assert call["messages"] == [{"role": "system", "content": "seed"}, {"role": "user", "content": "hi"}]
    assert call["options"] == {"temperature": 0.1}


@pytest.mark.anyio
async def test_ollama_backend_failure_becomes_backend_error(make_service, repo):
    from chat_session.domain.errors import BackendError

    class BrokenClient:
        async def chat(self, **kwargs):
            raise ConnectionError("connection refused")

    service = make_service(OllamaCompletionBackend(BrokenClient()))
    session = await service.start_new_session("u1", "Chat")

    with pytest.raises(BackendError):
        await service.send_message(session.id, "hi")

    stored = await repo.get_session(session.id)
    assert [t.role for t in stored.turns] == ["system", "user"]
