# apps/workers/chat_session/infrastructure/langchain/llm_adapter.py
from __future__ import annotations

from logging import getLogger
from typing import AsyncIterator, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessageChunk

from chat_session.application.utils.to_langchain_messages import to_langchain_messages
from chat_session.domain.ports.llm import CompletionChunk, CompletionRequest
from chat_session.infrastructure.langchain.openai_client import get_llm
from chat_session.settings import Settings

log = getLogger(__name__)


def _chunk_text(chunk: BaseMessageChunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    # Content blocks (list of str / {"type": "text", "text": ...})
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def _chunk_role(chunk: BaseMessageChunk) -> Optional[str]:
    # AIMessageChunk.type == "AIMessageChunk"; ChatMessageChunk carries an explicit role
    role = getattr(chunk, "role", None)
    if role:
        return str(role)
    if chunk.type.startswith("AIMessage"):
        return "assistant"
    return chunk.type


class LangchainCompletionBackend:
    """CompletionPort implementation wrapping a LangChain ChatModel.

    Uses the OpenAI chat model from openai_client.get_llm() by default;
    any BaseChatModel can be injected without changing domain code.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self.llm = llm

    async def astream(self, request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        """Streaming ChatCompletion; `request.model` is bound per call and overrides the client default."""
        messages = to_langchain_messages(request.turns)
        log.debug("LangChain stream: model=%s messages=%d", request.model, len(messages))
        llm = self.llm.bind(model=request.model) if request.model else self.llm
        async for chunk in llm.astream(messages):
            yield CompletionChunk(content_delta=_chunk_text(chunk), role=_chunk_role(chunk))


async def get_backend(settings: Settings, model: Optional[str] = None) -> LangchainCompletionBackend:
    return LangchainCompletionBackend(await get_llm(settings, model))
