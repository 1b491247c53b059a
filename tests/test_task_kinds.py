#!/usr/bin/env python3
"""
Tests for per-kind defaults
"""
import pytest

from taskrelay.core.task_kinds import (
    default_instruction, load_kind_table, resolve_instruction, template_for_kind, turns_for_kind
)


@pytest.mark.parametrize("kind, turns", [
    ("assistant", 5),
    ("meta-ads", 20),
    ("campaign-monitor", 15),
    ("tm-monitor", 50),
    ("think", 15),
    ("something-new", 20),
])
def test_turn_budgets(kind, turns):
    assert turns_for_kind(kind) == turns


def test_templates():
    assert template_for_kind("assistant") == "chat"
    assert template_for_kind("think") == "think"
    assert template_for_kind("tm-monitor") == "command"
    assert template_for_kind("unknown") == "command"


def test_unknown_kind_default_instruction():
    assert default_instruction("weekly-report") == "Run the weekly-report agent."


def test_explicit_instruction_wins_for_regular_kinds():
    assert resolve_instruction("meta-ads", "  only campaign 42 ") == "only campaign 42"
    assert resolve_instruction("meta-ads", "").startswith("Pull the latest Meta Ads")
    assert resolve_instruction("meta-ads", None).startswith("Pull the latest Meta Ads")


def test_assistant_instruction_is_prefixed_with_preamble():
    text = resolve_instruction("assistant", "What sold best?")
    assert text.startswith("Answer the question or complete the task")
    assert text.endswith("\n\nWhat sold best?")


def test_load_custom_table(tmp_path):
    path = tmp_path / "kinds.yaml"
    path.write_text(
        "default:\n  template: base\n  max_turns: 3\n"
        "kinds:\n  report:\n    max_turns: 9\n    instruction: Write it.\n",
        encoding="utf-8",
    )
    table = load_kind_table(path)

    assert table.get("report").max_turns == 9
    assert table.get("report").template == "base"
    assert table.get("report").instruction == "Write it."
    assert table.get("other").max_turns == 3


def test_invalid_table_raises(tmp_path):
    path = tmp_path / "kinds.yaml"
    path.write_text("kinds: [unclosed", encoding="utf-8")
    with pytest.raises(ValueError):
        load_kind_table(path)
