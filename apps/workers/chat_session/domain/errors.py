from __future__ import annotations

import uuid


class ChatSessionError(Exception):
    """Base class for failures surfaced by the session pipeline."""


class NotFoundError(ChatSessionError):
    """A session or other resource is absent. Not retried."""


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: uuid.UUID | str):
        super().__init__(f"Chat session {session_id} not found")
        self.session_id = session_id


class InputValidationError(ChatSessionError):
    """Malformed input (unparseable ids, blank messages, non-JSON metadata)."""


class BackendError(ChatSessionError):
    """The completion backend failed (network or protocol)."""


class StoreError(ChatSessionError):
    """The history store failed to read or write."""


class ExchangeCancelledError(ChatSessionError):
    """The caller cancelled an exchange through its cancel event."""
