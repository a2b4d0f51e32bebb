"""Lifecycle event emission (NDJSON) and timing."""

from __future__ import annotations

import sys
import time
from datetime import datetime, timezone
from typing import IO, Any

import orjson


class Timer:
    """Simple context-manager timer for measuring duration_ms."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)


class EventEmitter:
    """Writes one JSON object per line for each lifecycle event.

    Disabled emitters drop everything, so callers can emit unconditionally.
    """

    def __init__(self, enabled: bool = False, stream: IO[str] | None = None) -> None:
        self.enabled = enabled
        self._stream = stream

    def emit(self, event: str, data: Any = None) -> None:
        if not self.enabled:
            return
        payload = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data if data is not None else {},
        }
        out = self._stream or sys.stderr
        out.write(orjson.dumps(payload, default=str).decode() + "\n")
        out.flush()
