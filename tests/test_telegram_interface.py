#!/usr/bin/env python3
"""
Tests for the Telegram interface: busy handling, live edits, result delivery
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest

from taskrelay.core import BusyState, RunResult
from taskrelay.telegram import interface as interface_mod
from taskrelay.telegram.interface import (
    BUSY_REPLY, WORKING_PLACEHOLDER, TelegramInterface, chunk_text, md_to_html
)
from conftest import ScriptedBridge


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def monotonic(self):
        return self.now


def make_update(user_id=1, chat_id=10):
    working = SimpleNamespace(chat_id=chat_id, message_id=77)
    message = MagicMock()
    message.text = "How many tickets sold?"
    message.reply_text = AsyncMock(return_value=working)
    return SimpleNamespace(
        effective_user=SimpleNamespace(id=user_id),
        effective_chat=SimpleNamespace(id=chat_id),
        message=message,
    )


def make_context():
    bot = MagicMock()
    bot.edit_message_text = AsyncMock()
    bot.send_chat_action = AsyncMock()
    return SimpleNamespace(bot=bot)


def make_iface(bridge, busy=None, allowed_users=None):
    return TelegramInterface("", bridge, busy or BusyState(), allowed_users=allowed_users)


@pytest.mark.asyncio
async def test_prompt_runs_assistant_with_chat_template():
    bridge = ScriptedBridge(["42 tickets"])
    iface = make_iface(bridge)
    update, context = make_update(), make_context()

    await iface.handle_prompt(update, context, "How many tickets sold?")

    call = bridge.calls[0]
    assert call["task_kind"] == "assistant"
    assert call["template"] == "chat"
    assert call["max_turns"] == 20
    assert call["instruction"] == "How many tickets sold?"
    update.message.reply_text.assert_any_await(WORKING_PLACEHOLDER)
    final = context.bot.edit_message_text.await_args_list[-1].kwargs
    assert final["text"] == "42 tickets"
    assert final["message_id"] == 77
    assert final["parse_mode"] == ParseMode.HTML
    assert iface.agent_busy is False


@pytest.mark.asyncio
@pytest.mark.parametrize("busy", [
    BusyState(job_running=True),
    BusyState(check_running=True),
])
async def test_busy_worker_gets_busy_reply(busy):
    bridge = ScriptedBridge(["x"])
    iface = make_iface(bridge, busy)
    update = make_update()

    await iface.handle_prompt(update, make_context(), "hi")

    update.message.reply_text.assert_awaited_once_with(BUSY_REPLY)
    assert bridge.calls == []


@pytest.mark.asyncio
async def test_concurrent_interactive_request_gets_busy_reply():
    bridge = ScriptedBridge(["x"])
    iface = make_iface(bridge)
    iface.agent_busy = True
    update = make_update()

    await iface.handle_prompt(update, make_context(), "hi")

    update.message.reply_text.assert_awaited_once_with(BUSY_REPLY)


@pytest.mark.asyncio
async def test_unlisted_user_is_denied():
    bridge = ScriptedBridge(["x"])
    iface = make_iface(bridge, allowed_users=[5])
    update = make_update(user_id=1)

    await iface.handle_prompt(update, make_context(), "hi")

    update.message.reply_text.assert_awaited_once_with("Access denied.")
    assert bridge.calls == []


@pytest.mark.asyncio
async def test_live_edits_are_debounced(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr(interface_mod, "time", clock)

    class TimedBridge(ScriptedBridge):
        async def run(self, task_kind, instruction, max_turns=None, on_chunk=None, template=None):
            for offset, chunk in ((0.5, "a"), (1.5, "b"), (2.0, "c"), (3.0, "d")):
                clock.now = 100.0 + offset
                await on_chunk(chunk)
            return RunResult(text="abcd", success=True)

    iface = make_iface(TimedBridge())
    context = make_context()

    await iface.handle_prompt(make_update(), context, "stream please")

    texts = [c.kwargs["text"] for c in context.bot.edit_message_text.await_args_list]
    # Two streaming edits (at +1.5s and +3.0s) and the final edit
    assert texts == ["ab", "abcd", "abcd"]


@pytest.mark.asyncio
async def test_failed_live_edit_is_ignored(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr(interface_mod, "time", clock)

    class TimedBridge(ScriptedBridge):
        async def run(self, task_kind, instruction, max_turns=None, on_chunk=None, template=None):
            clock.now += 5
            await on_chunk("same")
            return RunResult(text="same", success=True)

    context = make_context()
    context.bot.edit_message_text.side_effect = [BadRequest("Message is not modified"), None]
    iface = make_iface(TimedBridge())

    await iface.handle_prompt(make_update(), context, "x")

    assert context.bot.edit_message_text.await_count == 2
    assert iface.agent_busy is False


@pytest.mark.asyncio
async def test_long_result_is_split_across_messages():
    text = "a" * 5000
    iface = make_iface(ScriptedBridge(result=RunResult(text=text, success=True)))
    update, context = make_update(), make_context()

    await iface.handle_prompt(update, context, "long")

    final = context.bot.edit_message_text.await_args_list[-1].kwargs["text"]
    assert final == "a" * 4096
    overflow = update.message.reply_text.await_args_list[-1]
    assert overflow.args[0] == "a" * 904
    assert overflow.kwargs["parse_mode"] == ParseMode.HTML


@pytest.mark.asyncio
async def test_final_edit_failure_falls_back_to_reply():
    iface = make_iface(ScriptedBridge(result=RunResult(text="result text", success=True)))
    update, context = make_update(), make_context()
    context.bot.edit_message_text.side_effect = BadRequest("message to edit not found")

    await iface.handle_prompt(update, context, "x")

    update.message.reply_text.assert_any_await("result text")


@pytest.mark.asyncio
async def test_executor_exception_replies_and_clears_flag():
    iface = make_iface(ScriptedBridge(error=RuntimeError("429 Too Many Requests")))
    update = make_update()

    await iface.handle_prompt(update, make_context(), "x")

    reply = update.message.reply_text.await_args_list[-1].args[0]
    assert reply.startswith("Something went wrong: 429 Too Many Requests")
    assert "Rate limit" in reply
    assert iface.agent_busy is False


@pytest.mark.asyncio
async def test_notify_owner_without_chat_id_is_a_noop():
    iface = make_iface(ScriptedBridge())
    iface.app = MagicMock()
    iface.app.bot.send_message = AsyncMock()

    await iface.notify_owner("report")

    iface.app.bot.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_notify_owner_sends_html_to_owner_chat():
    iface = TelegramInterface("", ScriptedBridge(), BusyState(), notification_chat_id=999)
    iface.app = MagicMock()
    iface.app.bot.send_message = AsyncMock()

    await iface.notify_owner("[TM One]\n\n**2 shows** changed")

    iface.app.bot.send_message.assert_awaited_once_with(
        chat_id=999, text="[TM One]\n\n<b>2 shows</b> changed", parse_mode=ParseMode.HTML
    )


@pytest.mark.asyncio
async def test_status_command_reports_occupant():
    iface = make_iface(ScriptedBridge(), BusyState(job_running=True))
    update = make_update()

    await iface._handle_status(update, make_context())

    update.message.reply_text.assert_awaited_once_with("Agent is busy (job running).")


def test_md_to_html_formats_and_escapes():
    assert md_to_html("**bold** and `a<b>` & *it*") == "<b>bold</b> and <code>a&lt;b&gt;</code> &amp; <i>it</i>"
    assert md_to_html("## Summary") == "<b>Summary</b>"
    assert md_to_html("```python\nx = 1\n```") == "<pre>x = 1\n</pre>"


def test_chunk_text_slices():
    assert chunk_text("abcdefg", 3) == ["abc", "def", "g"]
    assert chunk_text("", 3) == []
