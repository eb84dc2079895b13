from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class LlmProvider(str, Enum):
    """Types of supported completion backends.

    Domain layer only knows *who* provides the model.
    Transport details (HTTP / SDK) are handled in infrastructure.
    """
    OLLAMA = "ollama"
    OPENAI = "openai"
    ECHO = "echo"


# Default domain-level policy (can be overridden via environment/settings)
DEFAULT_PROVIDER = LlmProvider.OLLAMA


def resolve_provider(name: Optional[str]) -> LlmProvider:
    """Pick the provider configured in settings.

    Unknown or empty names fall back to DEFAULT_PROVIDER instead of failing startup.
    """
    try:
        return LlmProvider((name or "").strip().lower())
    except ValueError:
        if name:
            logger.warning("Unknown LLM provider %r, falling back to %s", name, DEFAULT_PROVIDER.value)
        return DEFAULT_PROVIDER
