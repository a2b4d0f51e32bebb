"""OpenAI-compatible chat completions backend."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from openai import AsyncOpenAI, OpenAIError

from sheetops.agent.backends.base import Message, ModelBackend
from sheetops.contracts.common import BackendError

logger = logging.getLogger(__name__)


class OpenAIBackend(ModelBackend):
    name = "openai"

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        *,
        base_url: str | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self._timeout = timeout

    async def stream_chat(self, messages: list[Message]) -> AsyncIterator[str]:
        if not self.api_key:
            raise BackendError("OPENAI_API_KEY is not configured")
        try:
            client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self._timeout)
            stream = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0,
                stream=True,
                response_format={"type": "json_object"},
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except OpenAIError as e:
            logger.error("OpenAI request failed: %s", e)
            raise BackendError(f"OpenAI request failed: {e}") from e
