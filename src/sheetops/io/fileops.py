"""File helpers: BOM-tolerant reads, atomic writes, session locking."""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from datetime import datetime, timezone
from io import TextIOWrapper
from pathlib import Path
from typing import Any

import orjson
import portalocker

from sheetops.contracts.common import SheetOpsError


class LockHeldError(SheetOpsError):
    """Raised when another process holds the lock on an output file."""

    code = "ERR_LOCK_HELD"


def read_text_safe(path: str | Path) -> str:
    """Read a UTF-8 text file, silently dropping a leading BOM."""
    return Path(path).read_text(encoding="utf-8-sig")


def read_json(path: str | Path) -> Any:
    return orjson.loads(read_text_safe(path))


def atomic_write(target: str | Path, data: bytes) -> None:
    """Write data to target atomically via temp file + rename."""
    target = Path(target)
    fd, tmp_path = tempfile.mkstemp(
        dir=target.parent, suffix=target.suffix, prefix=".sheetops_tmp_"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        shutil.move(tmp_path, target)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def write_json(target: str | Path, data: Any) -> None:
    atomic_write(target, orjson.dumps(data, option=orjson.OPT_INDENT_2, default=str))


class SessionLock:
    """Exclusive sidecar lock held for a CLI read-modify-write cycle.

    The lock lives in ``<file>.sheetops.lock`` next to the output file. The OS
    releases it if the process dies; a leftover sidecar is then simply stale
    and the next process acquires it normally.
    """

    def __init__(self, path: str | Path, *, timeout: float = 0) -> None:
        self.path = Path(path).resolve()
        self.timeout = timeout
        self._lock_path = self.path.parent / (self.path.name + ".sheetops.lock")
        self._lock_file: TextIOWrapper | None = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def _acquire(self, fh: TextIOWrapper) -> None:
        if self.timeout <= 0:
            portalocker.lock(fh, portalocker.LOCK_EX | portalocker.LOCK_NB)
            return
        deadline = time.monotonic() + self.timeout
        interval = min(0.1, max(0.01, self.timeout / 20))
        while True:
            try:
                portalocker.lock(fh, portalocker.LOCK_EX | portalocker.LOCK_NB)
                return
            except portalocker.LockException:
                if time.monotonic() >= deadline:
                    raise
                time.sleep(interval)

    def __enter__(self) -> "SessionLock":
        self._lock_file = open(self._lock_path, "a+")  # noqa: SIM115
        try:
            self._acquire(self._lock_file)
        except portalocker.LockException as e:
            self._lock_file.close()
            self._lock_file = None
            raise LockHeldError(
                f"{self.path.name} is locked by another sheetops process",
                details={"lock_file": str(self._lock_path)},
            ) from e

        self._lock_file.seek(0)
        self._lock_file.truncate()
        self._lock_file.write(f"pid={os.getpid()}\n")
        self._lock_file.write(f"time={datetime.now(timezone.utc).isoformat()}\n")
        self._lock_file.flush()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        if self._lock_file is not None:
            try:
                portalocker.unlock(self._lock_file)
            finally:
                self._lock_file.close()
                self._lock_file = None
