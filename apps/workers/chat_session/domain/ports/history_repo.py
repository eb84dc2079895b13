"""
History Repository Port
- Defines how chat sessions and their turns are stored, retrieved, and deleted.
- Used by the session orchestrator to load context and append user/assistant turns.
"""
from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional

from chat_session.domain.entities import Role, Session, Turn


class HistoryRepository(ABC):
    """
    Port (contract) for persisting chat sessions.
    - Owns no business logic: CRUD plus append only.
    - Every operation is atomic for a single session; no cross-session transactions.
    - Returned sessions are snapshots; mutating them never changes stored state.
    - Engine failures surface as StoreError; a missing session as SessionNotFoundError / None.
    """

    async def initialize(self) -> None:
        """
        Prepare the underlying storage (tables, indexes).
        Called once by the composition code during process startup.
        """

    async def close(self) -> None:
        """Release pooled connections or other resources."""

    @abstractmethod
    async def create_session(self, user_id: str, title: str) -> Session:
        ...

    @abstractmethod
    async def get_session(self, session_id: uuid.UUID) -> Optional[Session]:
        """Return the session with all of its turns, or None when absent."""
        ...

    @abstractmethod
    async def list_sessions(self, user_id: str, limit: int = 50) -> List[Session]:
        """Sessions of `user_id`, most recent `last_message_at` first."""
        ...

    @abstractmethod
    async def append_turn(
            self,
            session_id: uuid.UUID,
            role: Role,
            content: str,
            metadata: Optional[Mapping[str, Any]] = None,
    ) -> Turn:
        """
        Append one turn and move `last_message_at` to its timestamp in the same atomic step.
        Timestamps are strictly increasing within a session.
        Raises SessionNotFoundError if the session is absent.
        """
        ...

    @abstractmethod
    async def update_session(self, session: Session) -> None:
        """
        Overwrite title, turns and last_message_at of an existing session.
        Identity, owner and creation time are never changed.
        Raises SessionNotFoundError if the session is absent.
        """
        ...

    @abstractmethod
    async def update_title(self, session_id: uuid.UUID, title: str) -> None:
        """
        Change only the title. Turns and last_message_at are left as stored, so a rename
        never races with concurrent appends.
        Raises SessionNotFoundError if the session is absent.
        """
        ...

    @abstractmethod
    async def delete_session(self, session_id: uuid.UUID) -> bool:
        """Idempotent delete. Returns False when nothing was stored under `session_id`."""
        ...

    @abstractmethod
    async def session_exists(self, session_id: uuid.UUID) -> bool:
        ...
