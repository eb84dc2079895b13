"""
Chat Session Console Entrypoint
- Builds the history store and completion backend from Settings, initializes the store once,
  and runs the line-oriented console on top of ChatSessionService.
- Ctrl+C while a reply streams cancels that reply; at the prompt it exits. SIGTERM exits.
"""
# main.py
import asyncio
import logging
import signal
import sys
from logging import getLogger
from typing import Optional

from chat_session.console import ChatConsole
from chat_session.infrastructure.di import make_chat_service, make_history_repo, shutdown_history_repo
from chat_session.settings import Settings

settings = Settings()

log = getLogger('ChatConsole')

LOG_LEVEL = settings.LOG_LEVEL
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname).1s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
    handlers=[logging.StreamHandler(sys.stderr)],
)

# Tone down noisy third‑party loggers
for noisy in ("asyncio", "httpcore", "httpx", "openai._base_client", "ollama", "asyncpg"):
    logging.getLogger(noisy).setLevel(settings.NOISY_LEVEL)


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def main():
    """
    Main async loop.
    - Initializes the history store (explicit, once) and the completion backend.
    - Runs the console until /exit, end of input, or a shutdown signal.
    """
    repo = await make_history_repo(settings)
    service = await make_chat_service(settings, repo)
    console = ChatConsole(service, settings)
    reader = await _stdin_reader()

    async def read_line(prompt: str) -> Optional[str]:
        sys.stdout.write(prompt)
        sys.stdout.flush()
        raw = await reader.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace")

    # 🛑 SIGINT cancels the streaming reply first; otherwise both signals stop the console
    main_task = asyncio.current_task()
    loop = asyncio.get_running_loop()

    def _on_sigint():
        if not console.interrupt() and main_task is not None:
            main_task.cancel()

    loop.add_signal_handler(signal.SIGINT, _on_sigint)
    if main_task is not None:
        loop.add_signal_handler(signal.SIGTERM, main_task.cancel)

    try:
        await console.run(read_line)
    except asyncio.CancelledError:
        print("\n🧹 Shutting down...")
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        await shutdown_history_repo(repo)
        log.info("Console stopped")


def run():
    asyncio.run(main())


# Run the console
if __name__ == "__main__":
    run()
