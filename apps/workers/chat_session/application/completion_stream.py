"""
Completion Stream (Streaming Completion Adapter)
- Turns an ordered list of stored turns into a bounded CompletionRequest (history window + role mapping).
- Normalizes backend chunks into a uniform Fragment stream: empty deltas dropped, unknown roles -> assistant.
- Streaming toggle: when disabled, the incremental API is still used but one assembled Fragment is yielded at the end.
- Cooperative cancellation through task cancellation or an optional asyncio.Event.
"""
from __future__ import annotations

import asyncio
from logging import getLogger
from time import monotonic
from typing import Any, AsyncIterator, List, Optional, Sequence

from chat_session.domain.entities import Fragment, Role, Turn, normalize_role
from chat_session.domain.errors import BackendError, ExchangeCancelledError
from chat_session.domain.ports.llm import CompletionChunk, CompletionPort, CompletionRequest, PromptTurn
from chat_session.settings import Settings

log = getLogger(__name__)


async def _anext(source: AsyncIterator[CompletionChunk]) -> CompletionChunk:
    return await source.__anext__()


async def _aclose(source: Any) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


class CompletionStream:

    def __init__(
            self,
            backend: CompletionPort,
            *,
            default_model: str,
            max_history_messages: int,
            streaming: bool = True,
    ) -> None:
        if max_history_messages <= 0:
            raise ValueError("max_history_messages must be greater than 0")
        self.backend = backend
        self.default_model = default_model
        self.max_history_messages = max_history_messages
        self.streaming = streaming

    @classmethod
    def from_settings(cls, backend: CompletionPort, settings: Settings) -> "CompletionStream":
        return cls(
            backend,
            default_model=settings.DEFAULT_MODEL,
            max_history_messages=settings.MAX_HISTORY_MESSAGES,
            streaming=settings.ENABLE_STREAMING_RESPONSE,
        )

    def build_request(self, turns: Sequence[Turn], model: Optional[str] = None) -> CompletionRequest:
        """
        Build the backend request from the most recent `max_history_messages` turns.
        Older turns stay stored; they are only left out of the model's context.
        """
        ordered = sorted(turns, key=lambda t: t.timestamp)
        window = ordered[-self.max_history_messages:]
        if len(window) < len(ordered):
            log.debug("History window: %d of %d turns sent", len(window), len(ordered))

        prompt: List[PromptTurn] = []
        for t in window:
            role = normalize_role(t.role)
            if role != t.role:
                log.debug("Unknown role %r mapped to %s", t.role, role)
            prompt.append(PromptTurn(role=role, content=t.content or ""))

        return CompletionRequest(model=model or self.default_model, turns=tuple(prompt), streaming=self.streaming)

    async def stream(
            self,
            turns: Sequence[Turn],
            *,
            model: Optional[str] = None,
            cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Fragment]:
        """
        Stream fragments for `turns` (which already end with the new user turn).

        Raises:
            BackendError: the backend failed; fragments already yielded are not retracted.
            ExchangeCancelledError: `cancel_event` was set while streaming.
            asyncio.CancelledError: the consuming task was cancelled.
        """
        request = self.build_request(turns, model)
        fragments = self._read(request, cancel_event)
        try:
            if self.streaming:
                async for fragment in fragments:
                    yield fragment
                return

            # Non-streaming presentation: same incremental call, assembled into one message
            parts: List[str] = []
            role: Role = "assistant"
            async for fragment in fragments:
                parts.append(fragment.text)
                role = fragment.role
            text = "".join(parts)
            if text:
                yield Fragment(role=role, text=text)
        finally:
            await fragments.aclose()

    async def _read(
            self,
            request: CompletionRequest,
            cancel_event: Optional[asyncio.Event],
    ) -> AsyncIterator[Fragment]:
        started = monotonic()
        count = 0
        source = self.backend.astream(request)
        log.debug("Starting chat completion with model %s (%d turns)", request.model, len(request.turns))
        try:
            while True:
                try:
                    chunk = await self._next(source, cancel_event)
                except StopAsyncIteration:
                    break
                except (BackendError, ExchangeCancelledError):
                    raise
                except Exception as e:
                    log.warning("Completion backend failed after %d chunks: %s", count, e)
                    raise BackendError(f"completion backend failed: {e}") from e

                if not chunk.content_delta:
                    continue
                count += 1
                role = normalize_role(chunk.role) if chunk.role else "assistant"
                yield Fragment(role=role, text=chunk.content_delta)
        finally:
            await _aclose(source)

        log.debug("Completed streaming response in %dms with %d chunks", int((monotonic() - started) * 1000), count)

    @staticmethod
    async def _next(
            source: AsyncIterator[CompletionChunk],
            cancel_event: Optional[asyncio.Event],
    ) -> CompletionChunk:
        """Read one chunk, racing it against `cancel_event` when one is given."""
        if cancel_event is None:
            return await source.__anext__()
        if cancel_event.is_set():
            raise ExchangeCancelledError("exchange cancelled")

        pending = asyncio.ensure_future(_anext(source))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({pending, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not pending.done():
                pending.cancel()
                # The backend stream must be idle before it can be closed
                await asyncio.gather(pending, return_exceptions=True)

        if pending.cancelled():
            raise ExchangeCancelledError("exchange cancelled")
        return pending.result()
