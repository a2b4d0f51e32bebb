"""Backend selection from settings."""

from __future__ import annotations

from sheetops.agent.backends.base import ModelBackend
from sheetops.agent.backends.gemini import GeminiBackend
from sheetops.agent.backends.ollama import OllamaBackend
from sheetops.agent.backends.openai_backend import OpenAIBackend
from sheetops.config import Settings, get_settings
from sheetops.contracts.common import OperationArgsError

PROVIDERS = ("ollama", "gemini", "openai")


def get_backend(provider: str | None = None, settings: Settings | None = None) -> ModelBackend:
    """Build the backend for ``provider`` (default: ``AGENT_PROVIDER``)."""
    settings = settings or get_settings()
    provider = (provider or settings.AGENT_PROVIDER).lower()
    if provider == "ollama":
        return OllamaBackend(
            settings.OLLAMA_BASE_URL,
            settings.OLLAMA_MODEL,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )
    if provider == "gemini":
        return GeminiBackend(settings.GEMINI_API_KEY, settings.GEMINI_MODEL)
    if provider == "openai":
        return OpenAIBackend(
            settings.OPENAI_API_KEY,
            settings.OPENAI_MODEL,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )
    raise OperationArgsError(
        f"Unknown provider: {provider}",
        details={"provider": provider, "choices": list(PROVIDERS)},
    )
