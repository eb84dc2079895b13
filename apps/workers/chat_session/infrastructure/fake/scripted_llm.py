"""
Scripted completion backend
- CompletionPort implementation that replays pre-defined chunks.
- Used by tests and by the `echo` provider for running the console without a model server.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Iterable, List, Optional, Sequence

from chat_session.domain.ports.llm import CompletionChunk, CompletionRequest


def _as_chunk(chunk: CompletionChunk | str) -> CompletionChunk:
    return chunk if isinstance(chunk, CompletionChunk) else CompletionChunk(content_delta=chunk, role="assistant")


def echo_reply(request: CompletionRequest) -> List[CompletionChunk]:
    """Echo the most recent user turn back word by word."""
    last_user = next((t.content for t in reversed(request.turns) if t.role == "user"), "")
    words = last_user.split(" ")
    chunks = [CompletionChunk(content_delta=w if i == 0 else f" {w}", role="assistant") for i, w in enumerate(words)]
    return [c for c in chunks if c.content_delta]


class ScriptedCompletionBackend:
    """
    Replays `chunks` for every request (or builds them with `reply`).

    - fail_after: raise `error` after that many chunks were yielded (0 = before the first one)
    - stall: block forever after the scripted chunks, until cancelled
    - delay: optional sleep between chunks
    - requests: every request received, for assertions
    """

    def __init__(
            self,
            chunks: Iterable[CompletionChunk | str] = (),
            *,
            reply: Optional[Callable[[CompletionRequest], Sequence[CompletionChunk | str]]] = None,
            fail_after: Optional[int] = None,
            error: Optional[BaseException] = None,
            stall: bool = False,
            delay: float = 0.0,
    ) -> None:
        self.chunks = [_as_chunk(c) for c in chunks]
        self.reply = reply
        self.fail_after = fail_after
        self.error = error or ConnectionError("scripted backend failure")
        self.stall = stall
        self.delay = delay
        self.requests: List[CompletionRequest] = []
        self.closed = 0

    async def astream(self, request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        self.requests.append(request)
        chunks = [_as_chunk(c) for c in self.reply(request)] if self.reply is not None else self.chunks
        try:
            for i, chunk in enumerate(chunks):
                if self.fail_after is not None and i >= self.fail_after:
                    raise self.error
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield chunk
            if self.fail_after is not None and self.fail_after >= len(chunks):
                raise self.error
            if self.stall:
                await asyncio.Event().wait()
        finally:
            self.closed += 1
