from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger
from time import monotonic
from typing import AsyncIterator, List, Optional

from chat_session.application.completion_stream import CompletionStream
from chat_session.domain.entities import Session, Turn
from chat_session.domain.errors import (
    BackendError,
    ExchangeCancelledError,
    InputValidationError,
    SessionNotFoundError,
)
from chat_session.domain.ports.history_repo import HistoryRepository
from chat_session.settings import Settings

log = getLogger(__name__)


class ExchangeState(str, Enum):
    IDLE = "idle"
    USER_TURN_PERSISTED = "user_turn_persisted"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Exchange:
    """In-flight state of one user message -> assistant reply round trip."""
    session_id: uuid.UUID
    model: str
    state: ExchangeState = ExchangeState.IDLE
    parts: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=monotonic)

    def advance(self, state: ExchangeState) -> None:
        log.debug("Exchange on session %s: %s -> %s", self.session_id, self.state.value, state.value)
        self.state = state

    @property
    def text(self) -> str:
        return "".join(self.parts)

    @property
    def duration_ms(self) -> int:
        return int((monotonic() - self.started_at) * 1000)


class ChatSessionService:
    """
    ChatSessionService
    ------------------
    Application service that owns the session lifecycle and the streaming
    message pipeline.

    Responsibilities:
    - Create sessions seeded with a system turn
    - Persist the user turn before contacting the completion backend
    - Forward fragments to the caller as they arrive while accumulating them
    - Persist the assembled assistant turn only after a successful, non-empty stream

    Store and backend lifecycles (pools, clients, initialization) are handled
    by the composition code (infrastructure/di.py, main.py). Nothing is cached
    between calls: each operation re-reads the session.
    """

    def __init__(
            self,
            settings: Settings,
            history_repo: HistoryRepository,
            completion_stream: CompletionStream,
    ) -> None:
        self._settings = settings
        self._history = history_repo
        self._completion = completion_stream

    # -------------------------
    # Session lifecycle
    # -------------------------
    async def start_new_session(self, user_id: str, title: str = "New Chat") -> Session:
        """Create a session and seed it with the system turn before returning it."""
        log.info("Starting new chat session for user %s", user_id)
        try:
            session = await self._history.create_session(user_id, title)
            await self._history.append_turn(session.id, "system", self._settings.SYSTEM_PROMPT)
            seeded = await self._history.get_session(session.id)
        except Exception:
            log.exception("Failed to start new chat session for user %s", user_id)
            raise
        if seeded is None:
            # Deleted concurrently between create and read-back
            raise SessionNotFoundError(session.id)
        return seeded

    async def get_session(self, session_id: uuid.UUID) -> Optional[Session]:
        try:
            return await self._history.get_session(session_id)
        except Exception:
            log.exception("Failed to retrieve session %s", session_id)
            raise

    async def list_sessions(self, user_id: str) -> List[Session]:
        try:
            return await self._history.list_sessions(user_id, limit=self._settings.SESSION_LIST_LIMIT)
        except Exception:
            log.exception("Failed to retrieve sessions for user %s", user_id)
            raise

    async def rename_session(self, session_id: uuid.UUID, title: str) -> Session:
        title = (title or "").strip()
        if not title:
            raise InputValidationError("session title must not be empty")
        await self._history.update_title(session_id, title)
        session = await self._history.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        log.info("Renamed chat session %s", session_id)
        return session

    async def delete_session(self, session_id: uuid.UUID) -> None:
        try:
            removed = await self._history.delete_session(session_id)
        except Exception:
            log.exception("Failed to delete session %s", session_id)
            raise
        if removed:
            log.info("Deleted chat session %s", session_id)
        else:
            log.debug("Chat session %s was already absent", session_id)

    # -------------------------
    # Messaging
    # -------------------------
    async def send_message(
            self,
            session_id: uuid.UUID,
            message: str,
            *,
            cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """Send a message and return the full reply (drains send_message_stream)."""
        parts: List[str] = []
        try:
            async for fragment in self.send_message_stream(session_id, message, cancel_event=cancel_event):
                parts.append(fragment)
        except Exception:
            log.error("Failed to send message to session %s", session_id)
            raise
        return "".join(parts)

    async def send_message_stream(
            self,
            session_id: uuid.UUID,
            message: str,
            *,
            cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """
        Stream the assistant reply for `message` as text fragments.

        Exchange states: IDLE -> USER_TURN_PERSISTED -> STREAMING -> COMPLETED | FAILED | CANCELLED.
        The user turn is never rolled back; the assistant turn is written only on COMPLETED
        with non-empty text.
        """
        if not message or not message.strip():
            raise InputValidationError("message must not be empty")

        # 1) Load the session (fresh read on every call)
        session = await self._history.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        exchange = Exchange(session_id=session_id, model=self._completion.default_model)

        # 2) Durable user turn before any backend call; a store failure aborts here
        user_turn = await self._history.append_turn(session_id, "user", message)
        exchange.advance(ExchangeState.USER_TURN_PERSISTED)

        # 3) Timestamp-ordered context ending with the new user turn
        turns: List[Turn] = sorted([*session.turns, user_turn], key=lambda t: t.timestamp)

        # 4) Forward fragments immediately while accumulating them
        exchange.advance(ExchangeState.STREAMING)
        fragments = self._completion.stream(turns, model=exchange.model, cancel_event=cancel_event)
        try:
            async for fragment in fragments:
                exchange.parts.append(fragment.text)
                yield fragment.text
        except BackendError:
            exchange.advance(ExchangeState.FAILED)
            log.error("Completion failed for session %s after %d fragments", session_id, len(exchange.parts))
            raise
        except (ExchangeCancelledError, asyncio.CancelledError, GeneratorExit):
            exchange.advance(ExchangeState.CANCELLED)
            log.info("Message exchange for session %s was cancelled", session_id)
            raise
        except Exception:
            exchange.advance(ExchangeState.FAILED)
            log.exception("Message exchange for session %s failed", session_id)
            raise
        finally:
            await fragments.aclose()

        # 5) Persist the assembled reply; an empty stream leaves no assistant turn
        text = exchange.text
        if text:
            try:
                await self._history.append_turn(
                    session_id,
                    "assistant",
                    text,
                    metadata={
                        "model": exchange.model,
                        "fragmentCount": len(exchange.parts),
                        "durationMs": exchange.duration_ms,
                    },
                )
            except Exception:
                exchange.advance(ExchangeState.FAILED)
                log.exception("Failed to save assistant reply to session %s", session_id)
                raise
        else:
            log.warning("Completion for session %s produced no content", session_id)
        exchange.advance(ExchangeState.COMPLETED)
        log.debug("Completed message exchange for session %s", session_id)
