"""
Persisted record shapes (store-agnostic).
- SessionRecord: {id, userId, title, createdAt, lastMessageAt, messages: [TurnRecord]}
- TurnRecord:    {id, role, content, timestamp, metadata?}
Conversion helpers translate between records and domain entities.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence

from pydantic import JsonValue, TypeAdapter

from chat_session.application.dto.common import CamelModel
from chat_session.domain.entities import Session, Turn, normalize_role


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class TurnRecord(CamelModel):
    id: uuid.UUID
    role: str
    content: str
    timestamp: datetime
    metadata: Optional[dict[str, JsonValue]] = None

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnRecord":
        return cls(
            id=turn.id,
            role=turn.role,
            content=turn.content,
            timestamp=turn.timestamp,
            metadata=turn.metadata,
        )

    def to_turn(self) -> Turn:
        return Turn(
            id=self.id,
            # Stored rows may carry roles written by other clients
            role=normalize_role(self.role),
            content=self.content,
            timestamp=_as_utc(self.timestamp),
            metadata=self.metadata,
        )


class SessionRecord(CamelModel):
    id: uuid.UUID
    user_id: str
    title: str
    created_at: datetime
    last_message_at: datetime
    messages: List[TurnRecord] = []

    @classmethod
    def from_session(cls, session: Session) -> "SessionRecord":
        return cls(
            id=session.id,
            user_id=session.user_id,
            title=session.title,
            created_at=session.created_at,
            last_message_at=session.last_message_at,
            messages=[TurnRecord.from_turn(t) for t in session.turns],
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SessionRecord":
        """Build from a chat_sessions row; `messages` arrives as jsonb text."""
        raw = row["messages"]
        if isinstance(raw, (str, bytes)):
            messages = _turn_list_adapter.validate_json(raw)
        else:
            messages = _turn_list_adapter.validate_python(raw or [])
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            created_at=row["created_at"],
            last_message_at=row["last_message_at"],
            messages=messages,
        )

    def to_session(self) -> Session:
        return Session(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            created_at=_as_utc(self.created_at),
            last_message_at=_as_utc(self.last_message_at),
            turns=[m.to_turn() for m in self.messages],
        )


_turn_list_adapter: TypeAdapter[List[TurnRecord]] = TypeAdapter(List[TurnRecord])


def dump_turns(turns: Sequence[Turn]) -> str:
    """Serialize turns as a JSON array (camelCase keys) for a jsonb column."""
    records = [TurnRecord.from_turn(t) for t in turns]
    return _turn_list_adapter.dump_json(records, by_alias=True, exclude_none=True).decode()


def load_turns(raw: str | bytes | None) -> List[Turn]:
    """Parse a JSON array of turn records into domain turns."""
    if not raw:
        return []
    return [r.to_turn() for r in _turn_list_adapter.validate_json(raw)]
