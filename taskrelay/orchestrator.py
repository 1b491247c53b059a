"""
Agent orchestrator - wires the three entry points around one executor
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from taskrelay.bridges import ClaudeBridge, HeartbeatPinger, SupabaseQueueStore
from taskrelay.config import config
from taskrelay.core import BusyState, INotifier, NullNotifier
from taskrelay.core.job_poller import JobQueuePoller
from taskrelay.core.scheduler import PeriodicScheduler
from taskrelay.telegram import TelegramInterface

logger = logging.getLogger(__name__)


class AgentOrchestrator:
    """Owns the shared busy state and starts/stops every entry point."""

    def __init__(self):
        self.busy = BusyState()
        self.claude_bridge = ClaudeBridge()
        self.running = False

        self.component_status = {
            "claude_available": False,
            "queue_configured": config.queue.enabled,
            "telegram_configured": bool(config.telegram.bot_token),
        }

        self.telegram_interface: Optional[TelegramInterface] = None
        if config.telegram.bot_token:
            self.telegram_interface = TelegramInterface(
                bot_token=config.telegram.bot_token,
                bridge=self.claude_bridge,
                busy=self.busy,
                allowed_users=config.telegram.allowed_users,
                notification_chat_id=config.telegram.notification_chat_id,
            )
        else:
            logger.info("Telegram interface not configured (no bot token)")
        notifier: INotifier = self.telegram_interface or NullNotifier()

        self.queue_store = SupabaseQueueStore.from_config()
        self.job_poller = JobQueuePoller(self.queue_store, self.claude_bridge, self.busy)
        self.scheduler = PeriodicScheduler(self.claude_bridge, self.busy, notifier)

        self.heartbeat: Optional[HeartbeatPinger] = None
        if config.scheduler.dashboard_url:
            self.heartbeat = HeartbeatPinger(
                config.scheduler.dashboard_url,
                interval_seconds=config.scheduler.heartbeat_interval_sec,
            )

        logger.info("AgentOrchestrator initialized")

    def _ensure_workdir(self) -> None:
        """Session cache for browser state and last-seen data lives under the workdir."""
        session_dir = Path(config.claude.workdir) / "session"
        session_dir.mkdir(parents=True, exist_ok=True)

    async def start(self):
        """Start all entry points"""
        if self.running:
            logger.warning("Orchestrator is already running")
            return

        logger.info("Starting agent orchestrator...")
        self._ensure_workdir()
        for problem in config.validate():
            logger.warning(f"Config: {problem}")

        self.component_status["claude_available"] = self.claude_bridge.test_connection()
        self.running = True

        if self.telegram_interface:
            await self.telegram_interface.start()
        await self.scheduler.start()
        await self.job_poller.start()
        if self.heartbeat:
            await self.heartbeat.start()

        self._log_startup_status()

    async def stop(self):
        """Stop all entry points"""
        if not self.running:
            return
        logger.info("Stopping agent orchestrator...")
        self.running = False

        await self.job_poller.stop()
        await self.scheduler.stop()
        if self.telegram_interface:
            await self.telegram_interface.stop()
        await self.close_clients()
        logger.info("Agent orchestrator stopped")

    async def close_clients(self):
        """Close the HTTP clients held by the heartbeat and the queue store"""
        if self.heartbeat:
            await self.heartbeat.stop()
        if self.queue_store:
            await self.queue_store.aclose()

    def _log_startup_status(self):
        """Log detailed startup status"""
        status_lines = [
            "=== Agent Orchestrator Status ===",
            f"Claude Code CLI: {'[OK] Available' if self.component_status['claude_available'] else '[--] Not found'} ({self.claude_bridge.claude_executable})",
            f"Job queue: {'[OK] Polling' if self.job_poller.enabled else '[--] Disabled'}",
            f"Telegram bot: {'[OK] Running' if self.telegram_interface else '[--] Not configured'}",
            f"Scheduled checks: {', '.join(self.scheduler.checks) or 'none'}",
            f"Heartbeat: {self.heartbeat.endpoint if self.heartbeat else 'disabled'}",
            f"Working directory: {Path(config.claude.workdir).resolve()}",
            "================================="
        ]
        for line in status_lines:
            logger.info(line)

    def get_status(self) -> Dict[str, Any]:
        """Get current system status"""
        return {
            "running": self.running,
            "components": dict(self.component_status),
            "busy": {
                "job_running": self.busy.job_running,
                "check_running": self.busy.check_running,
                "interactive": bool(self.telegram_interface and self.telegram_interface.agent_busy),
            },
            "checks": {
                name: {"cron": check.cron, "running": self.scheduler.is_running(name)}
                for name, check in self.scheduler.checks.items()
            },
        }
