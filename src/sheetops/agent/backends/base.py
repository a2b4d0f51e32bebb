"""Uniform contract for language-model backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from sheetops.agent.jsonish import parse_lenient
from sheetops.contracts.common import PlanParseError

Message = dict[str, str]


def messages_to_prompt(messages: list[Message]) -> str:
    """Flatten role-tagged messages for completion-style endpoints."""
    return "\n\n".join(f"{m['role'].upper()}: {m['content']}" for m in messages)


class ModelBackend(ABC):
    """A model provider behind a streaming chat interface.

    Subclasses implement :meth:`stream_chat`; they wrap transport and
    provider failures in ``BackendError``.
    """

    name: str = "model"

    @abstractmethod
    def stream_chat(self, messages: list[Message]) -> AsyncIterator[str]:
        """Yield text chunks of the model's reply as they arrive."""
        ...

    async def complete(self, messages: list[Message]) -> str:
        """Full reply text (the concatenation of the stream)."""
        chunks = [chunk async for chunk in self.stream_chat(messages)]
        return "".join(chunks)

    async def complete_json(self, messages: list[Message]) -> Any:
        """Ask for a JSON reply and parse it leniently."""
        content = await self.complete(messages)
        try:
            return parse_lenient(content)
        except json.JSONDecodeError as e:
            raise PlanParseError(f"{self.name} returned invalid JSON: {e}") from e
