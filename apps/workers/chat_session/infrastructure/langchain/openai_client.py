# apps/workers/chat_session/infrastructure/langchain/openai_client.py
from __future__ import annotations

import asyncio
from logging import getLogger
from typing import Dict, NamedTuple, Optional

from langchain_openai import ChatOpenAI

from chat_session.settings import Settings

log = getLogger(__name__)


class _ModelKey(NamedTuple):
    model: str
    temperature: float
    timeout_s: Optional[int]


_lock = asyncio.Lock()
_registry: Dict[_ModelKey, ChatOpenAI] = {}


def _build(key: _ModelKey, api_key: Optional[str]) -> ChatOpenAI:
    kwargs = {}
    if api_key:
        kwargs["api_key"] = api_key
    # streaming=True so astream() yields token deltas instead of one final message
    return ChatOpenAI(
        model=key.model,
        temperature=key.temperature,
        streaming=True,
        timeout=key.timeout_s,
        **kwargs,
    )


async def get_llm(
        settings: Settings,
        model: Optional[str] = None,
        *,
        temperature: Optional[float] = None,
        timeout_s: Optional[int] = None,
) -> ChatOpenAI:
    """Shared ChatOpenAI instance per (model, temperature, timeout)."""
    key = _ModelKey(
        model=model or settings.DEFAULT_MODEL,
        temperature=settings.LLM_TEMPERATURE if temperature is None else temperature,
        timeout_s=settings.LLM_TIMEOUT_S if timeout_s is None else timeout_s,
    )
    cached = _registry.get(key)
    if cached is not None:
        return cached

    async with _lock:
        if key not in _registry:
            _registry[key] = _build(key, settings.OPENAI_API_KEY)
            log.info("Created ChatOpenAI client model=%s", key.model)
        return _registry[key]
