"""
InMemoryHistoryRepository
- Reference implementation of domain/ports/history_repo.HistoryRepository.
- Keeps sessions in a dict guarded by an asyncio.Lock; every call works on one session atomically.
- Hands out deep copies so callers only ever hold snapshots.
"""
from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import timedelta
from logging import getLogger
from typing import Any, Dict, List, Mapping, Optional

from chat_session.domain.entities import Role, Session, Turn, utcnow, validate_metadata
from chat_session.domain.errors import SessionNotFoundError
from chat_session.domain.ports.history_repo import HistoryRepository

log = getLogger(__name__)

_TICK = timedelta(microseconds=1)


class InMemoryHistoryRepository(HistoryRepository):

    def __init__(self) -> None:
        self._sessions: Dict[uuid.UUID, Session] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, user_id: str, title: str) -> Session:
        session = Session(user_id=user_id, title=title)
        async with self._lock:
            self._sessions[session.id] = session
        log.info("Created new chat session %s for user %s", session.id, user_id)
        return copy.deepcopy(session)

    async def get_session(self, session_id: uuid.UUID) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    async def list_sessions(self, user_id: str, limit: int = 50) -> List[Session]:
        async with self._lock:
            owned = [s for s in self._sessions.values() if s.user_id == user_id]
            owned.sort(key=lambda s: s.last_message_at, reverse=True)
            return copy.deepcopy(owned[: max(0, int(limit))])

    async def append_turn(
            self,
            session_id: uuid.UUID,
            role: Role,
            content: str,
            metadata: Optional[Mapping[str, Any]] = None,
    ) -> Turn:
        meta = validate_metadata(metadata)
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)

            timestamp = utcnow()
            if session.turns:
                # Keep timestamps strictly increasing even when the clock does not move
                last = max(t.timestamp for t in session.turns)
                if timestamp <= last:
                    timestamp = last + _TICK

            turn = Turn(role=role, content=content, timestamp=timestamp, metadata=meta)
            session.turns.append(turn)
            session.last_message_at = timestamp

        log.debug("Saved %s message to session %s", role, session_id)
        return copy.deepcopy(turn)

    async def update_session(self, session: Session) -> None:
        async with self._lock:
            stored = self._sessions.get(session.id)
            if stored is None:
                raise SessionNotFoundError(session.id)
            stored.title = session.title
            stored.turns = copy.deepcopy(list(session.turns))
            stored.last_message_at = session.last_message_at
        log.debug("Updated chat session %s", session.id)

    async def update_title(self, session_id: uuid.UUID, title: str) -> None:
        async with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                raise SessionNotFoundError(session_id)
            stored.title = title
        log.debug("Updated title of chat session %s", session_id)

    async def delete_session(self, session_id: uuid.UUID) -> bool:
        async with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if not removed:
            log.debug("Delete requested for unknown session %s", session_id)
        return removed

    async def session_exists(self, session_id: uuid.UUID) -> bool:
        async with self._lock:
            return session_id in self._sessions
