from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class PromptTurn:
    """One role-tagged message of a completion request."""
    role: str
    content: str


@dataclass(frozen=True)
class CompletionRequest:
    """
    Backend-neutral completion request.
    - model: backend model identifier
    - turns: ordered, already windowed conversation
    - streaming: presentation mode requested by configuration (informational;
      backends always use their incremental API)
    """
    model: str
    turns: Sequence[PromptTurn] = field(default_factory=tuple)
    streaming: bool = True


@dataclass(frozen=True)
class CompletionChunk:
    """A raw fragment as reported by the backend. `role` may be missing or unknown."""
    content_delta: str
    role: Optional[str] = None


@runtime_checkable
class CompletionPort(Protocol):
    """
    Port over a streaming text-generation backend.

    Pure transport/protocol abstraction: it neither persists nor interprets content.
    The stream ends normally when the backend signals completion; transport failures
    are raised as-is and asyncio.CancelledError must propagate.
    """

    def astream(self, request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        """Yield chunks incrementally for the given request."""
        ...
