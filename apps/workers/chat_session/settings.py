# apps/workers/chat_session/settings.py
from pathlib import Path
from typing import Optional
import os
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent


class StoreBackend(str, Enum):
    POSTGRES = "postgres"
    MEMORY = "memory"


class Settings(BaseSettings):
    # ── Completion backend
    LLM_PROVIDER: str = "ollama"  # ollama | openai | echo
    DEFAULT_MODEL: str = "gemma2:2b"
    OLLAMA_API_URL: str = "http://localhost:11434"
    OPENAI_API_KEY: str | None = None
    LLM_TEMPERATURE: float = 0.7
    LLM_TIMEOUT_S: int | None = 90

    # ── Conversation pipeline
    MAX_HISTORY_MESSAGES: int = 100  # 최근 N개 메시지만 요청에 포함
    ENABLE_STREAMING_RESPONSE: bool = True
    SYSTEM_PROMPT: str = "You are a helpful assistant that will help with questions."
    SESSION_LIST_LIMIT: int = 50

    # ── Persistence
    STORE_BACKEND: StoreBackend = StoreBackend.POSTGRES
    DB_URL: str | None = Field(default=None, description="dsn is required for the postgres store")
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 10

    # ── Console
    DEFAULT_USER_ID: str = "console-user"
    COMMAND_TIMEOUT_S: int = 30
    STREAM_TIMEOUT_S: Optional[float] = None

    APP_NAME: str | None = "chat_session"
    LOG_LEVEL: str = "INFO"
    NOISY_LEVEL: str = "WARNING"

    @classmethod
    def settings_customise_sources(
            cls,
            settings_cls,
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        if os.getenv("APP_ENV") == "production":
            return env_settings, init_settings, file_secret_settings

        return env_settings, init_settings, file_secret_settings, dotenv_settings

    @field_validator("MAX_HISTORY_MESSAGES", "SESSION_LIST_LIMIT")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("COMMAND_TIMEOUT_S")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        # 0 disables the console command timeout
        if value < 0:
            raise ValueError("must not be negative")
        return value

    # ── pydantic v2
    model_config = SettingsConfigDict(
        env_file=(BASE_DIR / ".env", BASE_DIR / ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )
