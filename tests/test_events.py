#!/usr/bin/env python3
"""
Tests for NDJSON lifecycle events
"""
from taskrelay.core import events
from taskrelay.core.events import emit_event, events_path, read_events


def test_emit_and_read(isolated_env):
    emit_event("job_claimed", job_id="a", task_kind="assistant", error_class=None)
    emit_event("job_finished", job_id="a", status="done")

    got = read_events()
    assert [e["event"] for e in got] == ["job_claimed", "job_finished"]
    assert "error_class" not in got[0]
    assert events_path().parent == isolated_env


def test_read_skips_malformed_lines(isolated_env):
    emit_event("one")
    with events_path().open("a", encoding="utf-8") as f:
        f.write("{not json\n")
    emit_event("two")
    assert [e["event"] for e in read_events()] == ["one", "two"]


def test_read_limits_to_last_lines(isolated_env):
    for i in range(5):
        emit_event("tick", n=i)
    assert [e["n"] for e in read_events(lines=2)] == [3, 4]


def test_rotation(isolated_env, monkeypatch):
    monkeypatch.setattr(events, "_MAX_BYTES", 200)
    for i in range(10):
        emit_event("padding", text="x" * 50, n=i)
    path = events_path()
    assert path.with_suffix(path.suffix + ".1").exists()
    assert path.stat().st_size <= 200


def test_emit_never_raises(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file", encoding="utf-8")
    emit_event("x", logs_dir=str(blocker / "logs"))
