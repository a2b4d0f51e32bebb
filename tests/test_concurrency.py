"""Tests for SessionLock and locked CLI read-modify-write cycles."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from sheetops.cli import app
from sheetops.io.fileops import LockHeldError, SessionLock

runner = CliRunner()


@pytest.fixture()
def session_path(tmp_path: Path) -> Path:
    return tmp_path / "session.json"


class TestSessionLock:
    def test_basic_acquire_release(self, session_path: Path):
        with SessionLock(session_path) as lock:
            assert lock.lock_path.exists()
        with SessionLock(session_path):
            pass

    def test_lock_path_property(self, session_path: Path):
        expected = session_path.parent / (session_path.name + ".sheetops.lock")
        assert SessionLock(session_path).lock_path == expected.resolve()

    def test_lock_file_contains_pid(self, session_path: Path):
        lock = SessionLock(session_path)
        with lock:
            pass
        content = lock.lock_path.read_text()
        assert f"pid={os.getpid()}" in content
        assert "time=" in content

    def test_second_lock_fails_immediately(self, session_path: Path):
        with SessionLock(session_path):
            with pytest.raises(LockHeldError) as exc:
                with SessionLock(session_path, timeout=0):
                    pass
        assert exc.value.code == "ERR_LOCK_HELD"
        assert exc.value.details["lock_file"].endswith(".sheetops.lock")

    def test_wait_gives_up_after_timeout(self, session_path: Path):
        with SessionLock(session_path):
            with pytest.raises(LockHeldError):
                with SessionLock(session_path, timeout=0.05):
                    pass

    def test_released_after_error(self, session_path: Path):
        with pytest.raises(RuntimeError):
            with SessionLock(session_path):
                raise RuntimeError("boom")
        with SessionLock(session_path):
            pass


def test_cli_reports_held_lock(session_path: Path, tmp_path: Path):
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps([{"op": "createSheet", "args": {"name": "A"}}]))

    with SessionLock(session_path):
        result = runner.invoke(app, ["apply", "--plan", str(plan), "--out", str(session_path)])

    assert result.exit_code == 50
    data = json.loads(result.stdout)
    assert data["errors"][0]["code"] == "ERR_LOCK_HELD"
    assert not session_path.exists()


def test_cli_without_out_needs_no_lock(tmp_path: Path):
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps([{"op": "createSheet", "args": {"name": "A"}}]))
    result = runner.invoke(app, ["apply", "--plan", str(plan)])
    assert result.exit_code == 0
    assert sorted(p.name for p in tmp_path.iterdir()) == ["plan.json"]
