"""Ollama backend over its HTTP API (``/api/chat`` with ``/api/generate`` fallback)."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sheetops.agent.backends.base import Message, ModelBackend, messages_to_prompt
from sheetops.agent.jsonish import parse_lenient
from sheetops.agent.prompts import REPAIR_INSTRUCTIONS
from sheetops.contracts.common import BackendError, PlanParseError

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_MIN_WAIT_SECONDS = 1
_MAX_WAIT_SECONDS = 10

# Non-streaming calls only: retrying a stream would replay tokens already
# handed to the caller.
_retry_decorator = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=_MIN_WAIT_SECONDS, max=_MAX_WAIT_SECONDS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class OllamaBackend(ModelBackend):
    """Streams JSON-mode replies from a local Ollama daemon.

    Daemons without ``/api/chat`` answer 404; the request is then replayed
    against ``/api/generate`` with the messages flattened into one prompt.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "qwen3:32b",
        *,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self._timeout, transport=self._transport)

    def _chat_body(self, messages: list[Message], *, stream: bool) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "stream": stream,
            "format": "json",
            "options": {"temperature": 0},
        }

    def _generate_body(self, messages: list[Message], *, stream: bool) -> dict[str, Any]:
        return {
            "model": self.model,
            "prompt": messages_to_prompt(messages),
            "stream": stream,
            "format": "json",
            "options": {"temperature": 0},
        }

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    async def stream_chat(self, messages: list[Message]) -> AsyncIterator[str]:
        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/chat", json=self._chat_body(messages, stream=True)) as res:
                    if res.status_code != 404:
                        if not res.is_success:
                            raise BackendError(f"Ollama /api/chat {res.status_code}")
                        async for token in _read_ndjson(res, "message"):
                            yield token
                        return

                logger.info("Ollama /api/chat not found, falling back to /api/generate")
                body = self._generate_body(messages, stream=True)
                async with client.stream("POST", "/api/generate", json=body) as res:
                    if not res.is_success:
                        raise BackendError(f"Ollama /api/generate {res.status_code}")
                    async for token in _read_ndjson(res, "response"):
                        yield token
        except httpx.TransportError as e:
            raise BackendError(f"Could not reach Ollama at {self.base_url}: {e}") from e

    # ------------------------------------------------------------------
    # One-shot JSON with a repair pass
    # ------------------------------------------------------------------
    @_retry_decorator
    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        async with self._client() as client:
            return await client.post(path, json=body)

    async def _generate(self, messages: list[Message]) -> str:
        res = await self._post("/api/generate", self._generate_body(messages, stream=False))
        if not res.is_success:
            raise BackendError(f"Ollama /api/generate {res.status_code}: {res.text}")
        return str(res.json().get("response") or "")

    async def complete(self, messages: list[Message]) -> str:
        try:
            res = await self._post("/api/chat", self._chat_body(messages, stream=False))
            if res.status_code == 404:
                return await self._generate(messages)
            if not res.is_success:
                raise BackendError(f"Ollama /api/chat {res.status_code}: {res.text}")
            return str((res.json().get("message") or {}).get("content") or "")
        except httpx.TransportError as e:
            raise BackendError(f"Could not reach Ollama at {self.base_url}: {e}") from e

    async def complete_json(self, messages: list[Message]) -> Any:
        """Parse the reply; on malformed JSON ask the model once to repair it."""
        content = await self.complete(messages)
        try:
            return parse_lenient(content)
        except json.JSONDecodeError:
            logger.warning("Ollama returned invalid JSON, attempting a repair pass")

        system = [m for m in messages if m["role"] == "system"]
        repair = system + [{"role": "user", "content": REPAIR_INSTRUCTIONS.format(bad=content)}]
        try:
            repaired = await self._generate(repair)
        except httpx.TransportError as e:
            raise BackendError(f"Could not reach Ollama at {self.base_url}: {e}") from e
        try:
            return parse_lenient(repaired)
        except json.JSONDecodeError as e:
            raise PlanParseError(f"Ollama returned invalid JSON after repair: {e}") from e


async def _read_ndjson(res: httpx.Response, field: str) -> AsyncIterator[str]:
    """Yield text tokens from an Ollama NDJSON stream.

    ``field`` is ``message`` for chat replies and ``response`` for generate.
    """
    async for line in res.aiter_lines():
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if payload.get("error"):
            raise BackendError(f"Ollama error: {payload['error']}")
        if field == "message":
            token = (payload.get("message") or {}).get("content") or ""
        else:
            token = payload.get("response") or ""
        if token:
            yield token
        if payload.get("done"):
            return
