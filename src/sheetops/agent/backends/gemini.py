"""Google Gemini backend (google-genai SDK, async streaming)."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from sheetops.agent.backends.base import Message, ModelBackend
from sheetops.contracts.common import BackendError

logger = logging.getLogger(__name__)


def _split_messages(messages: list[Message]) -> tuple[str | None, list[types.Content]]:
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    contents = [
        types.Content(
            role="user" if m["role"] == "user" else "model",
            parts=[types.Part(text=m["content"])],
        )
        for m in messages
        if m["role"] != "system"
    ]
    return system or None, contents


class GeminiBackend(ModelBackend):
    name = "gemini"

    def __init__(self, api_key: str | None, model: str = "gemini-2.5-pro") -> None:
        self.api_key = api_key
        self.model = model
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if not self.api_key:
            raise BackendError("GEMINI_API_KEY is not configured")
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def stream_chat(self, messages: list[Message]) -> AsyncIterator[str]:
        system, contents = _split_messages(messages)
        if not contents:
            raise BackendError("No user content found in messages for Gemini")
        client = self._get_client()
        config = types.GenerateContentConfig(
            system_instruction=system,
            response_mime_type="application/json",
            temperature=0,
        )
        try:
            stream = await client.aio.models.generate_content_stream(
                model=self.model, contents=contents, config=config
            )
            async for chunk in stream:
                if chunk.text:
                    yield chunk.text
        except genai_errors.APIError as e:
            logger.error("Gemini request failed: %s", e)
            raise BackendError(f"Gemini request failed: {e}") from e
