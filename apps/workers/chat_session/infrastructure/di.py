# apps/workers/chat_session/infrastructure/di.py
from logging import getLogger

from chat_session.application.completion_stream import CompletionStream
from chat_session.application.services.chat_session_service import ChatSessionService
from chat_session.domain.llm_policy import LlmProvider, resolve_provider
from chat_session.domain.ports.history_repo import HistoryRepository
from chat_session.domain.ports.llm import CompletionPort
from chat_session.infrastructure.db.pool_factory import create_pg_pool
from chat_session.infrastructure.fake.scripted_llm import ScriptedCompletionBackend, echo_reply
from chat_session.infrastructure.langchain.llm_adapter import get_backend as get_langchain_backend
from chat_session.infrastructure.ollama.ollama_client import get_llm as get_ollama_backend
from chat_session.infrastructure.repo.memory_history_repo import InMemoryHistoryRepository
from chat_session.infrastructure.repo.postgres_history_repo import PostgresHistoryRepository
from chat_session.settings import Settings, StoreBackend

log = getLogger(__name__)


async def make_history_repo(settings: Settings) -> HistoryRepository:
    """Build the configured store and run its one-time initialization."""
    if settings.STORE_BACKEND == StoreBackend.MEMORY:
        repo: HistoryRepository = InMemoryHistoryRepository()
    else:
        pool = await create_pg_pool(settings.DB_URL, settings.DB_POOL_MIN_SIZE, settings.DB_POOL_MAX_SIZE)
        repo = PostgresHistoryRepository(pool)
    await repo.initialize()
    log.info("History store ready (%s)", settings.STORE_BACKEND.value)
    return repo


async def shutdown_history_repo(repo: HistoryRepository) -> None:
    await repo.close()


async def make_completion_backend(settings: Settings) -> CompletionPort:
    provider = resolve_provider(settings.LLM_PROVIDER)
    if provider == LlmProvider.OPENAI:
        backend: CompletionPort = await get_langchain_backend(settings)
    elif provider == LlmProvider.ECHO:
        backend = ScriptedCompletionBackend(reply=echo_reply)
    else:
        backend = await get_ollama_backend(settings)
    log.info("Completion backend: %s (model=%s)", provider.value, settings.DEFAULT_MODEL)
    return backend


async def make_chat_service(settings: Settings, repo: HistoryRepository) -> ChatSessionService:
    backend = await make_completion_backend(settings)
    return ChatSessionService(settings, repo, CompletionStream.from_settings(backend, settings))
