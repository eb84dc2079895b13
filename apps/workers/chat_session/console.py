"""
Chat Console
- Thin line-oriented front-end over ChatSessionService.
- Lines starting with "/" are commands; anything else is sent to the current session
  and the reply is printed as it streams.
"""
from __future__ import annotations

import asyncio
import sys
import uuid
from logging import getLogger
from typing import Awaitable, Callable, Optional, TextIO, TypeVar

from chat_session.application.services.chat_session_service import ChatSessionService
from chat_session.domain.entities import Session
from chat_session.domain.errors import ChatSessionError, ExchangeCancelledError, InputValidationError
from chat_session.settings import Settings

log = getLogger(__name__)

T = TypeVar("T")

HELP_TEXT = """Commands:
  /new <title>     - Start a new chat session
  /list            - List your chat sessions
  /switch <id>     - Switch to a different session
  /rename <title>  - Rename the current session
  /delete <id>     - Delete a chat session
  /exit            - Exit the application
  /help            - Show this help message"""


def parse_session_id(raw: Optional[str], usage: str) -> uuid.UUID:
    if not raw:
        raise InputValidationError(f"Usage: {usage}")
    try:
        return uuid.UUID(raw.strip())
    except ValueError as e:
        raise InputValidationError(f"Invalid session id {raw!r}. Usage: {usage}") from e


class ChatConsole:

    def __init__(
            self,
            service: ChatSessionService,
            settings: Settings,
            *,
            out: TextIO = sys.stdout,
            user_id: Optional[str] = None,
    ) -> None:
        self.service = service
        self.settings = settings
        self.out = out
        self.user_id = user_id or settings.DEFAULT_USER_ID
        self.current: Optional[Session] = None
        # Set while a reply is streaming; SIGINT sets it to stop the reply
        self.cancel_event: Optional[asyncio.Event] = None

    def _print(self, text: str = "", end: str = "\n") -> None:
        self.out.write(text + end)
        self.out.flush()

    async def _with_timeout(self, aw: Awaitable[T]) -> T:
        timeout = self.settings.COMMAND_TIMEOUT_S
        if timeout and timeout > 0:
            return await asyncio.wait_for(aw, timeout=timeout)
        return await aw

    def prompt(self) -> str:
        label = str(self.current.id)[:8] if self.current else "No Session"
        return f"[{label}] You: "

    async def start(self) -> None:
        self._print("=== Chat Session Console ===")
        self._print(HELP_TEXT)
        self._print()
        self.current = await self._with_timeout(self.service.start_new_session(self.user_id, "Console Chat"))
        self._print(f"Started new session: {self.current.id}")
        self._print()

    async def handle_line(self, line: str) -> bool:
        """Process one input line. Returns False when the console should exit."""
        line = line.strip()
        if not line:
            return True
        try:
            if line.startswith("/"):
                return await self.handle_command(line)
            await self.send(line)
        except asyncio.TimeoutError:
            log.warning("Command timed out: %s", line)
            self._print(f"Error: timed out after {self.settings.COMMAND_TIMEOUT_S}s")
            self._print()
        except ChatSessionError as e:
            log.info("Command failed: %s", e)
            self._print(f"Error: {e}")
            self._print()
        except Exception as e:
            log.exception("Error processing user input")
            self._print(f"Error: {e}")
            self._print()
        return True

    async def handle_command(self, line: str) -> bool:
        parts = line.split()
        cmd = parts[0].lower()
        args = parts[1:]

        if cmd in ("/exit", "/quit"):
            self._print("Goodbye!")
            return False

        if cmd == "/help":
            self._print(HELP_TEXT)
        elif cmd == "/new":
            title = " ".join(args) or "New Console Chat"
            self.current = await self._with_timeout(self.service.start_new_session(self.user_id, title))
            self._print(f"Started new session: {self.current.id} - {title}")
        elif cmd == "/list":
            sessions = await self._with_timeout(self.service.list_sessions(self.user_id))
            self._print(f"Your chat sessions ({len(sessions)}):")
            for s in sessions:
                indicator = "*" if self.current is not None and s.id == self.current.id else " "
                self._print(f"{indicator} {s.id} - {s.title} (Last: {s.last_message_at:%Y-%m-%d %H:%M})")
        elif cmd == "/switch":
            session_id = parse_session_id(args[0] if args else None, "/switch <session-id>")
            target = await self._with_timeout(self.service.get_session(session_id))
            if target is None:
                self._print("Session not found.")
            else:
                self.current = target
                self._print(f"Switched to session: {target.id} - {target.title}")
        elif cmd == "/rename":
            if self.current is None:
                self._print("No active session. Use /new to start a new chat.")
            else:
                self.current = await self._with_timeout(
                    self.service.rename_session(self.current.id, " ".join(args))
                )
                self._print(f"Renamed session: {self.current.id} - {self.current.title}")
        elif cmd == "/delete":
            session_id = parse_session_id(args[0] if args else None, "/delete <session-id>")
            await self._with_timeout(self.service.delete_session(session_id))
            self._print(f"Deleted session: {session_id}")
            if self.current is not None and self.current.id == session_id:
                self.current = None
                self._print("Current session was deleted. Use /new to start a new chat.")
        else:
            self._print(f"Unknown command: {cmd}. Type /help for available commands.")

        self._print()
        return True

    async def send(self, message: str) -> None:
        if self.current is None:
            self._print("No active session. Use /new to start a new chat.")
            return

        self.cancel_event = asyncio.Event()
        timer = None
        if self.settings.STREAM_TIMEOUT_S:
            timer = asyncio.get_running_loop().call_later(self.settings.STREAM_TIMEOUT_S, self.cancel_event.set)

        self._print("Bot: ", end="")
        try:
            async for fragment in self.service.send_message_stream(
                    self.current.id, message, cancel_event=self.cancel_event
            ):
                self._print(fragment, end="")
            self._print()
        except ExchangeCancelledError:
            self._print(" [cancelled]")
        except Exception:
            # End the partial "Bot: ..." line so the error gets its own line
            self._print()
            raise
        finally:
            if timer is not None:
                timer.cancel()
            self.cancel_event = None
        self._print()

    def interrupt(self) -> bool:
        """Cancel the streaming reply, if any. Returns False when nothing was streaming."""
        if self.cancel_event is None or self.cancel_event.is_set():
            return False
        self.cancel_event.set()
        return True

    async def run(self, read_line: Callable[[str], Awaitable[Optional[str]]]) -> None:
        """REPL loop; `read_line(prompt)` returns None at end of input."""
        await self.start()
        while True:
            line = await read_line(self.prompt())
            if line is None:
                break
            if not await self.handle_line(line):
                break
