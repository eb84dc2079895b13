"""
Chat Session Entities
- Session: one conversation owned by a user id, holding its turns in conversation order.
- Turn: one immutable message (system / user / assistant) with optional JSON-like metadata.
- Fragment: an incremental piece of assistant text produced while streaming.
"""
from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import JsonValue, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from chat_session.domain.errors import InputValidationError

# Valid roles for chat turns
Role = Literal["system", "user", "assistant"]
ROLES: tuple[Role, ...] = ("system", "user", "assistant")

Metadata = Dict[str, JsonValue]

_metadata_adapter: TypeAdapter[Metadata] = TypeAdapter(Metadata)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_role(raw: Any) -> Role:
    """Map a raw role value onto a known Role.

    Unknown or malformed values fall back to "assistant" so that conversations
    created with future role names keep working.
    """
    if isinstance(raw, str):
        name = raw.strip().lower()
        if name in ROLES:
            return name  # type: ignore[return-value]
    # Enum-like values (e.g. provider role enums) expose the name through .value
    value = getattr(raw, "value", None)
    if isinstance(value, str) and value.strip().lower() in ROLES:
        return value.strip().lower()  # type: ignore[return-value]
    return "assistant"


def validate_metadata(metadata: Optional[Mapping[str, Any]]) -> Optional[Metadata]:
    """Return a detached, JSON-compatible copy of turn metadata (or None)."""
    if metadata is None:
        return None
    try:
        return _metadata_adapter.validate_python(copy.deepcopy(dict(metadata)))
    except PydanticValidationError as e:
        raise InputValidationError(f"turn metadata must be JSON-compatible: {e}") from e


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    metadata: Optional[Metadata] = None


@dataclass
class Session:
    user_id: str
    title: str = "New Chat"
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utcnow)
    last_message_at: datetime = field(default_factory=utcnow)
    turns: List[Turn] = field(default_factory=list)

    def ordered_turns(self) -> List[Turn]:
        """Turns sorted by timestamp; storage order is never trusted."""
        return sorted(self.turns, key=lambda t: t.timestamp)


@dataclass(frozen=True)
class Fragment:
    """A piece of streamed text tagged with the speaker role."""
    role: Role
    text: str
