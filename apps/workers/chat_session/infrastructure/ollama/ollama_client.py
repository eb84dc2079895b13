from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import ollama

from chat_session.domain.ports.llm import CompletionChunk, CompletionRequest
from chat_session.settings import Settings

logger = logging.getLogger(str(__name__))

_lock = asyncio.Lock()
_registry: Dict[Tuple[str, Optional[int]], ollama.AsyncClient] = {}


def _to_ollama_messages(request: CompletionRequest) -> List[Dict[str, str]]:
    return [{"role": t.role, "content": t.content} for t in request.turns]


class OllamaCompletionBackend:
    """Local/reference backend talking to an Ollama server through `ollama.AsyncClient`."""

    def __init__(self, client: Any, *, options: Optional[Dict[str, Any]] = None) -> None:
        self.client = client
        self.options = options or {}

    async def astream(self, request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        """Server-streaming chat call; the incremental API is used regardless of `request.streaming`."""
        logger.debug("Starting streaming chat completion with model %s", request.model)
        stream = await self.client.chat(
            model=request.model,
            messages=_to_ollama_messages(request),
            stream=True,
            options=self.options or None,
        )
        async for part in stream:
            message = part.get("message") or {}
            content = message.get("content")
            if content is None:
                # Bookkeeping frames (e.g. final stats) carry no message content
                continue
            yield CompletionChunk(content_delta=content, role=message.get("role"))


async def get_client(host: str, timeout_s: Optional[int] = None) -> ollama.AsyncClient:
    """Factory for reusing Ollama clients (keyed by host/timeout)."""
    key = (host, timeout_s)
    if key in _registry:
        return _registry[key]

    async with _lock:
        if key in _registry:
            return _registry[key]
        client = ollama.AsyncClient(host=host, timeout=timeout_s)
        logger.info("Created Ollama client for %s", host)
        _registry[key] = client
        return client


async def get_llm(settings: Settings) -> OllamaCompletionBackend:
    client = await get_client(settings.OLLAMA_API_URL, settings.LLM_TIMEOUT_S)
    return OllamaCompletionBackend(client, options={"temperature": settings.LLM_TEMPERATURE})
