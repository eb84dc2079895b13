"""
PostgresHistoryRepository (asyncpg)
- Async implementation that satisfies domain/ports/history_repo.HistoryRepository
- Uses asyncpg.Pool with `async with pool.acquire()` pattern.
- Turns live in a jsonb array on the session row, so an append is a single
  "append one element + move last_message_at" UPDATE.

Schema (created by `initialize()`):
  chat_sessions(
      id UUID PRIMARY KEY,
      user_id VARCHAR(255) NOT NULL,
      title VARCHAR(500) NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      last_message_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      messages JSONB NOT NULL DEFAULT '[]'::jsonb      -- [{id, role, content, timestamp, metadata?}]
  );
  idx_chat_sessions_user_id_last_message ON chat_sessions(user_id, last_message_at DESC)
"""
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from logging import getLogger
from typing import Any, AsyncIterator, List, Mapping, Optional

import asyncpg

from chat_session.application.dto.records import SessionRecord, dump_turns, load_turns
from chat_session.domain.entities import Role, Session, Turn, utcnow, validate_metadata
from chat_session.domain.errors import SessionNotFoundError, StoreError
from chat_session.domain.ports.history_repo import HistoryRepository

log = getLogger(__name__)

_TICK = timedelta(microseconds=1)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    id UUID PRIMARY KEY,
    user_id VARCHAR(255) NOT NULL,
    title VARCHAR(500) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    last_message_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    messages JSONB NOT NULL DEFAULT '[]'::jsonb
);

CREATE INDEX IF NOT EXISTS idx_chat_sessions_user_id_last_message
ON chat_sessions(user_id, last_message_at DESC);
"""

_SELECT_COLUMNS = "id, user_id, title, created_at, last_message_at, messages"


def _row_to_session(row: asyncpg.Record) -> Session:
    return SessionRecord.from_row(row).to_session()


class PostgresHistoryRepository(HistoryRepository):
    """
    Async repository for chat sessions, backed by Postgres (asyncpg).
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        # Translate driver failures into StoreError; domain errors pass through untouched
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            log.error("Failed to %s: %s", action, e)
            raise StoreError(f"failed to {action}") from e

    # --- Setup ---

    async def initialize(self) -> None:
        async with self._connection("initialize chat tables") as conn:
            await conn.execute(_SCHEMA_SQL)
        log.info("Database tables initialized successfully")

    async def close(self) -> None:
        await self.pool.close()

    # --- Writing ---

    async def create_session(self, user_id: str, title: str) -> Session:
        session = Session(user_id=user_id, title=title)
        async with self._connection(f"create chat session for user {user_id}") as conn:
            await conn.execute(
                """
                INSERT INTO chat_sessions (id, user_id, title, created_at, last_message_at, messages)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                """,
                session.id,
                session.user_id,
                session.title,
                session.created_at,
                session.last_message_at,
                dump_turns(session.turns),
            )
        log.info("Created new chat session %s for user %s", session.id, user_id)
        return session

    async def append_turn(
            self,
            session_id: uuid.UUID,
            role: Role,
            content: str,
            metadata: Optional[Mapping[str, Any]] = None,
    ) -> Turn:
        meta = validate_metadata(metadata)
        turn: Optional[Turn] = None
        async with self._connection(f"save message to session {session_id}") as conn:
            async with conn.transaction():
                # 1) Lock the session row to serialize appends within the session
                row = await conn.fetchrow(
                    "SELECT messages FROM chat_sessions WHERE id = $1 FOR UPDATE;",
                    session_id,
                )
                if row is not None:
                    # 2) Strictly increasing timestamps even when the clock does not move
                    timestamp = utcnow()
                    existing = load_turns(row["messages"])
                    if existing:
                        last = max(t.timestamp for t in existing)
                        if timestamp <= last:
                            timestamp = last + _TICK
                    turn = Turn(role=role, content=content, timestamp=timestamp, metadata=meta)

                    # 3) Append one element and move last_message_at in the same statement
                    await conn.execute(
                        """
                        UPDATE chat_sessions
                        SET messages        = messages || $2::jsonb,
                            last_message_at = $3
                        WHERE id = $1;
                        """,
                        session_id,
                        dump_turns([turn]),
                        timestamp,
                    )

        if turn is None:
            raise SessionNotFoundError(session_id)
        log.debug("Saved %s message to session %s", role, session_id)
        return turn

    async def update_session(self, session: Session) -> None:
        async with self._connection(f"update chat session {session.id}") as conn:
            status = await conn.execute(
                """
                UPDATE chat_sessions
                SET title           = $2,
                    last_message_at = $3,
                    messages        = $4::jsonb
                WHERE id = $1;
                """,
                session.id,
                session.title,
                session.last_message_at,
                dump_turns(session.ordered_turns()),
            )
        if status.endswith(" 0"):
            raise SessionNotFoundError(session.id)
        log.debug("Updated chat session %s", session.id)

    async def update_title(self, session_id: uuid.UUID, title: str) -> None:
        async with self._connection(f"rename chat session {session_id}") as conn:
            status = await conn.execute(
                "UPDATE chat_sessions SET title = $2 WHERE id = $1;",
                session_id,
                title,
            )
        if status.endswith(" 0"):
            raise SessionNotFoundError(session_id)
        log.debug("Updated title of chat session %s", session_id)

    async def delete_session(self, session_id: uuid.UUID) -> bool:
        async with self._connection(f"delete chat session {session_id}") as conn:
            status = await conn.execute("DELETE FROM chat_sessions WHERE id = $1;", session_id)
        removed = not status.endswith(" 0")
        if not removed:
            log.debug("Delete requested for unknown session %s", session_id)
        return removed

    # --- Reading ---

    async def get_session(self, session_id: uuid.UUID) -> Optional[Session]:
        async with self._connection(f"retrieve chat session {session_id}") as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLUMNS} FROM chat_sessions WHERE id = $1;",
                session_id,
            )
        return _row_to_session(row) if row is not None else None

    async def list_sessions(self, user_id: str, limit: int = 50) -> List[Session]:
        async with self._connection(f"retrieve chat sessions for user {user_id}") as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM chat_sessions
                WHERE user_id = $1
                ORDER BY last_message_at DESC
                LIMIT $2;
                """,
                user_id,
                max(0, int(limit)),
            )
        return [_row_to_session(r) for r in rows]

    async def session_exists(self, session_id: uuid.UUID) -> bool:
        async with self._connection(f"check if session {session_id} exists") as conn:
            found = await conn.fetchval(
                "SELECT EXISTS(SELECT 1 FROM chat_sessions WHERE id = $1);",
                session_id,
            )
        return bool(found)
