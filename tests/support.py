"""Helpers shared by the test modules."""

from __future__ import annotations

import json
from typing import AsyncIterator

from sheetops.agent.backends.base import Message, ModelBackend
from sheetops.contracts.workbook import RangeRef


def rng(sheet: str, r1: int, c1: int, r2: int | None = None, c2: int | None = None) -> RangeRef:
    """Shorthand for a RangeRef; a single cell when the far corner is omitted."""
    return RangeRef(
        sheet=sheet,
        r1=r1, c1=c1,
        r2=r1 if r2 is None else r2,
        c2=c1 if c2 is None else c2,
    )


class FakeBackend(ModelBackend):
    """Replays canned chunks instead of calling a model."""

    name = "fake"

    def __init__(self, chunks: list[str] | None = None, *, error: Exception | None = None) -> None:
        self.chunks = chunks or []
        self.error = error
        self.calls: list[list[Message]] = []

    async def stream_chat(self, messages: list[Message]) -> AsyncIterator[str]:
        self.calls.append(messages)
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


def plan_chunks(plan: dict, size: int = 7) -> list[str]:
    """Serialize a plan and split it into small stream chunks."""
    text = json.dumps(plan)
    return [text[i:i + size] for i in range(0, len(text), size)]
