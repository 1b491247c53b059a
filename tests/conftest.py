"""
Shared fixtures: isolated logs dir, a scripted stand-in for the claude CLI,
and in-memory fakes for the queue store, executor and notifier.
"""
import os
import stat
import sys
import textwrap
from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from taskrelay.core import IClaudeBridge, INotifier, IQueueStore, RunResult, TaskRecord, TaskStatus

_ENV_KEYS = (
    "TELEGRAM_BOT_TOKEN", "TELEGRAM_ALLOWED_USERS", "TELEGRAM_CHAT_ID",
    "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY",
    "CHECK_CRON", "SYNC_CRON", "THINK_CRON", "INGEST_URL", "CLAUDECODE",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep events and logs out of the repo and ignore the developer's .env."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    logs_dir = tmp_path / "logs"
    monkeypatch.setenv("LOGS_DIR", str(logs_dir))
    return logs_dir


@pytest.fixture
def prompts_dir(tmp_path):
    d = tmp_path / "prompts"
    d.mkdir()
    for name in ("command", "chat", "think"):
        (d / f"{name}.txt").write_text(f"{name} template", encoding="utf-8")
    return d


@pytest.fixture
def fake_claude(tmp_path):
    """Build an executable script that plays the CLI. `body` is Python source."""
    def make(body: str, name: str = "fake_claude"):
        path = tmp_path / name
        path.write_text(f"#!{sys.executable}\nimport json, sys\n" + textwrap.dedent(body), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)
    return make


def assistant_line(text: str) -> str:
    """One stream-json assistant event carrying a single text block."""
    import json
    return json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}})


class InMemoryQueueStore(IQueueStore):
    """Queue store with the same conditional-update rules as the hosted one."""

    def __init__(self, records: Optional[List[TaskRecord]] = None):
        self.records: Dict[str, TaskRecord] = {r.id: r for r in (records or [])}
        self.partial_writes: List[str] = []
        self.fail_terminal_times = 0
        self.terminal_calls = 0

    async def fetch_oldest_pending(self) -> Optional[TaskRecord]:
        pending = [r for r in self.records.values() if r.status is TaskStatus.PENDING]
        pending.sort(key=lambda r: r.created_at or "")
        return pending[0] if pending else None

    async def claim(self, record: TaskRecord) -> Optional[TaskRecord]:
        current = self.records[record.id]
        if current.status is not TaskStatus.PENDING:
            return None
        claimed = replace(current, status=TaskStatus.RUNNING, started_at="now")
        self.records[record.id] = claimed
        return claimed

    async def update_partial(self, record_id: str, partial_output: str) -> None:
        self.partial_writes.append(partial_output)
        record = self.records[record_id]
        if record.status is TaskStatus.RUNNING:
            self.records[record_id] = replace(record, partial_output=partial_output)

    async def _terminal(self, record_id: str, **fields) -> None:
        self.terminal_calls += 1
        if self.fail_terminal_times > 0:
            self.fail_terminal_times -= 1
            raise ConnectionError("connection reset by peer")
        record = self.records[record_id]
        if record.status is TaskStatus.RUNNING:
            self.records[record_id] = replace(record, finished_at="now", **fields)

    async def complete(self, record_id: str, final_output: str) -> None:
        await self._terminal(record_id, status=TaskStatus.DONE, final_output=final_output)

    async def fail(self, record_id: str, error_text: str) -> None:
        await self._terminal(record_id, status=TaskStatus.ERROR, error_text=error_text)


class ScriptedBridge(IClaudeBridge):
    """Executor stand-in that streams canned chunks and records its calls."""

    def __init__(self, chunks=None, result: Optional[RunResult] = None, error: Optional[BaseException] = None):
        self.chunks = list(chunks or [])
        self.result = result
        self.error = error
        self.calls: List[dict] = []
        self.gate = None

    async def run(self, task_kind, instruction, max_turns=None, on_chunk=None, template=None):
        self.calls.append({"task_kind": task_kind, "instruction": instruction,
                           "max_turns": max_turns, "template": template})
        if self.gate is not None:
            await self.gate.wait()
        for chunk in self.chunks:
            if on_chunk is not None:
                outcome = on_chunk(chunk)
                if hasattr(outcome, "__await__"):
                    await outcome
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        return RunResult(text="".join(self.chunks) or "Done.", success=True)

    def test_connection(self) -> bool:
        return True


class RecordingNotifier(INotifier):
    def __init__(self, error: Optional[BaseException] = None):
        self.messages: List[str] = []
        self.error = error

    async def notify_owner(self, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append(text)


def pending(record_id: str, kind: str = "assistant", prompt: Optional[str] = None,
            created_at: str = "2024-01-01T00:00:00Z") -> TaskRecord:
    return TaskRecord(id=record_id, task_kind=kind, status=TaskStatus.PENDING,
                      instruction_text=prompt, created_at=created_at)


@pytest.fixture
def env_path_without_claude(monkeypatch, tmp_path):
    """PATH that cannot resolve a claude binary."""
    empty = tmp_path / "empty_bin"
    empty.mkdir()
    monkeypatch.setenv("PATH", str(empty) + os.pathsep + "/nonexistent")
    return empty
