"""Runtime configuration, read from the environment and an optional ``.env``."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["ollama", "gemini", "openai"]


class Settings(BaseSettings):
    """Model backend settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    AGENT_PROVIDER: Provider = "ollama"

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "qwen3:32b"

    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-pro"

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"

    BACKEND_TIMEOUT_SECONDS: float = 300.0


def get_settings() -> Settings:
    return Settings()
