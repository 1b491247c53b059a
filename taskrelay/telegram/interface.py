"""
Telegram bot interface: interactive tasks and owner notifications
"""
import asyncio
import logging
import re
import time
from typing import List, Optional

from telegram import Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from taskrelay.config import config
from taskrelay.core import BusyState, IClaudeBridge, INotifier, TaskKind
from taskrelay.core.retry import classify_error

logger = logging.getLogger(__name__)

BUSY_REPLY = "Agent is busy. Try again in a moment."
WORKING_PLACEHOLDER = "Working on it..."
CHECK_PROMPT = "Check TM One for any updates. Compare against the last saved state and report what changed."


def md_to_html(text: str) -> str:
    """Convert common markdown patterns to Telegram HTML."""
    # Escape bare & < > first so only our own tags reach Telegram
    text = re.sub(r"&(?!amp;|lt;|gt;|quot;)", "&amp;", text)
    text = text.replace("<", "&lt;").replace(">", "&gt;")
    # ```block``` -> <pre>block</pre>
    text = re.sub(r"```\w*\n?([\s\S]*?)```", r"<pre>\1</pre>", text)
    # `code` -> <code>code</code>
    text = re.sub(r"`([^`\n]+?)`", r"<code>\1</code>", text)
    # **bold** or __bold__ -> <b>bold</b>
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"__(.+?)__", r"<b>\1</b>", text)
    # *italic* or _italic_ (not inside words or tags)
    text = re.sub(r"(?<![<\w])_([^_\n]+?)_(?![>\w])", r"<i>\1</i>", text)
    text = re.sub(r"(?<!\*)\*([^*\n]+?)\*(?!\*)", r"<i>\1</i>", text)
    # ## headers -> bold line
    text = re.sub(r"^#{1,3}\s+(.+)$", r"<b>\1</b>", text, flags=re.MULTILINE)
    return text


def chunk_text(text: str, max_len: int) -> List[str]:
    """Split long text into platform-sized slices."""
    return [text[i:i + max_len] for i in range(0, len(text), max_len)]


class TelegramInterface(INotifier):
    """Telegram bot: one interactive task at a time, live-edited as output streams in."""

    def __init__(self, bot_token: str, bridge: IClaudeBridge, busy: BusyState,
                 allowed_users: Optional[List[int]] = None, notification_chat_id: Optional[int] = None):
        self.bot_token = bot_token
        self.bridge = bridge
        self.busy = busy
        self.allowed_users = allowed_users or []
        self.notification_chat_id = notification_chat_id
        self.app: Optional[Application] = None
        self.is_running = False
        # Local flag: an interactive request occupies the worker
        self.agent_busy = False

        tg = config.telegram
        self.max_message_chars = tg.max_message_chars
        self.stream_tail_chars = tg.stream_tail_chars
        self.edit_debounce_sec = tg.edit_debounce_sec
        self.typing_interval_sec = tg.typing_interval_sec

        if bot_token:
            self.app = Application.builder().token(bot_token).build()
            self._setup_handlers()
            logger.info("Telegram interface initialized")

    def _setup_handlers(self):
        """Set up command and message handlers"""
        self.app.add_handler(CommandHandler("start", self._handle_start))
        self.app.add_handler(CommandHandler("help", self._handle_start))
        self.app.add_handler(CommandHandler("status", self._handle_status))
        self.app.add_handler(CommandHandler("check", self._handle_check))
        # Any other text is a task for the agent
        self.app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message))
        self.app.add_error_handler(self._handle_error)

    async def start(self):
        """Start the Telegram bot (long polling)"""
        if not self.app or self.is_running:
            return
        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling()
        self.is_running = True
        logger.info("Telegram bot started")

    async def stop(self):
        """Stop the Telegram bot"""
        if not self.app or not self.is_running:
            return
        try:
            await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
        except TelegramError as e:
            logger.error(f"Error stopping Telegram bot: {e}")
        self.is_running = False
        logger.info("Telegram bot stopped")

    def _check_user_permission(self, user_id: int) -> bool:
        """Check if user is allowed to use the bot"""
        if not self.allowed_users:
            return True  # No restrictions if no allowed users specified
        return user_id in self.allowed_users

    def is_busy(self) -> bool:
        return self.agent_busy or self.busy.job_running or self.busy.check_running

    async def _handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /start and /help"""
        if not self._check_user_permission(update.effective_user.id):
            await update.message.reply_text("Access denied.")
            return
        await update.message.reply_text(
            "Outlet Media Agent online.\n\n"
            "I monitor Ticketmaster One and keep your dashboard up to date.\n\n"
            "You can ask me anything:\n"
            "• \"Check TM One now\"\n"
            "• \"What are the ticket counts for all shows?\"\n"
            "• \"What changed since yesterday?\"\n\n"
            "/status - is the agent busy\n"
            "/check - run a TM One check now"
        )

    async def _handle_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /status"""
        if not self._check_user_permission(update.effective_user.id):
            await update.message.reply_text("Access denied.")
            return
        if self.agent_busy:
            text = "Agent is busy running a task."
        elif self.busy.occupant():
            text = f"Agent is busy ({self.busy.occupant().replace('_', ' ')})."
        else:
            text = "Agent is idle and ready."
        await update.message.reply_text(text)

    async def _handle_check(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self.handle_prompt(update, context, CHECK_PROMPT)

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self.handle_prompt(update, context, update.message.text)

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        logger.error(f"Telegram handler error: {context.error}")

    async def handle_prompt(self, update: Update, context: ContextTypes.DEFAULT_TYPE, prompt: str):
        """Run one interactive task, streaming output into a single edited message."""
        if not self._check_user_permission(update.effective_user.id):
            await update.message.reply_text("Access denied.")
            return

        # Block while another interactive request, a queued job or a scheduled check holds the worker
        if self.is_busy():
            await update.message.reply_text(BUSY_REPLY)
            return

        self.agent_busy = True
        typing_task: Optional[asyncio.Task] = None
        try:
            chat_id = update.effective_chat.id
            typing_task = asyncio.create_task(self._keep_typing(context, chat_id))
            working_msg = await update.message.reply_text(WORKING_PLACEHOLDER)

            buffer: List[str] = []
            last_edit = time.monotonic()

            async def on_chunk(chunk: str) -> None:
                nonlocal last_edit
                buffer.append(chunk)
                text = "".join(buffer)
                now = time.monotonic()
                if now - last_edit <= self.edit_debounce_sec or not text.strip():
                    return
                last_edit = now
                try:
                    await context.bot.edit_message_text(
                        chat_id=working_msg.chat_id,
                        message_id=working_msg.message_id,
                        text=md_to_html(text[-self.stream_tail_chars:]),
                        parse_mode=ParseMode.HTML,
                    )
                except TelegramError:
                    # Edit can fail if the message hasn't changed - ignore
                    pass

            logger.info(f"Interactive task from {update.effective_user.id}: {prompt[:80]!r}")
            result = await self.bridge.run(
                TaskKind.ASSISTANT,
                prompt,
                max_turns=config.claude.default_max_turns,
                on_chunk=on_chunk,
                template="chat",
            )
            await self._deliver_result(update, context, working_msg, result.text or "Done.")
        except Exception as e:
            logger.error(f"Interactive task failed: {e}")
            hint = classify_error(e).hint
            await update.message.reply_text(f"Something went wrong: {e}\n\n{hint}")
        finally:
            if typing_task is not None:
                typing_task.cancel()
            self.agent_busy = False

    async def _deliver_result(self, update: Update, context: ContextTypes.DEFAULT_TYPE, working_msg, text: str):
        """Final edit with the result; overflow goes out as follow-up messages."""
        limit = self.max_message_chars
        head = text[:limit]
        try:
            await context.bot.edit_message_text(
                chat_id=working_msg.chat_id,
                message_id=working_msg.message_id,
                text=md_to_html(head),
                parse_mode=ParseMode.HTML,
            )
        except TelegramError as e:
            logger.debug(f"Final edit failed, replying instead: {e}")
            await update.message.reply_text(head)

        if len(text) > limit:
            for chunk in chunk_text(text[limit:], limit):
                await update.message.reply_text(md_to_html(chunk), parse_mode=ParseMode.HTML)

    async def _keep_typing(self, context: ContextTypes.DEFAULT_TYPE, chat_id: int):
        """Refresh the typing indicator until cancelled."""
        while True:
            try:
                await context.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
            except TelegramError:
                pass
            await asyncio.sleep(self.typing_interval_sec)

    async def notify_owner(self, text: str) -> None:
        """Send a proactive message to the owner's chat (scheduled checks)."""
        if self.notification_chat_id is None:
            logger.warning("TELEGRAM_CHAT_ID not set - skipping notification")
            return
        if not self.app:
            logger.warning("Telegram bot not configured - skipping notification")
            return
        await self.app.bot.send_message(
            chat_id=self.notification_chat_id,
            text=md_to_html(text[:self.max_message_chars]),
            parse_mode=ParseMode.HTML,
        )

    def is_available(self) -> bool:
        """Check if Telegram interface is available and configured"""
        return self.app is not None and bool(self.bot_token)
