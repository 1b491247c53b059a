"""
Configuration settings for the task relay
"""
import os
import shutil
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Prefer .env from the project root; fallback to CWD
_project_env = PROJECT_ROOT / ".env"
_cwd_env = Path.cwd() / ".env"
if _project_env.exists():
    load_dotenv(_project_env)
elif _cwd_env.exists():
    load_dotenv(_cwd_env)


@dataclass
class ClaudeConfig:
    """Claude Code CLI configuration"""
    executable: str = "claude"
    output_format: str = "stream-json"
    skip_permissions: bool = True
    # Working directory holding CLAUDE.md, MEMORY.md and the session/ cache
    workdir: str = str(PROJECT_ROOT)
    prompts_dir: str = str(PROJECT_ROOT / "prompts")
    default_template: str = "command"
    default_max_turns: int = 20
    stderr_preview_chars: int = 200


@dataclass
class TelegramConfig:
    """Telegram bot configuration"""
    bot_token: str = ""
    allowed_users: List[int] = field(default_factory=list)
    notification_chat_id: Optional[int] = None
    max_message_chars: int = 4096
    # Live edits show only the tail of the buffer
    stream_tail_chars: int = 4000
    edit_debounce_sec: float = 1.2
    typing_interval_sec: float = 4.0


@dataclass
class QueueConfig:
    """Hosted job queue configuration"""
    url: str = ""
    service_key: str = ""
    table: str = "agent_jobs"
    poll_interval_sec: float = 5.0
    stream_debounce_sec: float = 2.0
    request_timeout_sec: float = 15.0

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.service_key)


@dataclass
class SchedulerConfig:
    """Cron schedules for the periodic checks"""
    check_cron: str = "0 */2 * * *"
    sync_cron: str = "0 */6 * * *"
    think_cron: str = "*/30 8-22 * * *"
    think_draft_path: str = "/tmp/outlet-media-proactive.txt"
    dashboard_url: str = ""
    heartbeat_interval_sec: float = 60.0


@dataclass
class SystemConfig:
    """System-wide configuration"""
    logs_dir: str = "logs"
    log_level: str = "INFO"


class Config:
    """Main configuration class"""

    def __init__(self):
        self.claude = ClaudeConfig(executable=self._find_claude_executable())
        self.telegram = TelegramConfig(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            allowed_users=self._parse_allowed_users(),
            notification_chat_id=self._parse_chat_id()
        )
        self.queue = QueueConfig()
        self.scheduler = SchedulerConfig()
        self.system = SystemConfig()
        # Apply env overrides for selected runtime-tunable settings
        self._apply_env_overrides()

    def _find_claude_executable(self) -> str:
        """Resolve the executor path: CLAUDE_PATH, then PATH lookup."""
        explicit = os.getenv("CLAUDE_PATH")
        if explicit:
            return explicit
        return shutil.which("claude") or "claude"

    def _parse_allowed_users(self) -> List[int]:
        """Parse allowed Telegram users from environment"""
        users_str = os.getenv("TELEGRAM_ALLOWED_USERS", "")
        if not users_str:
            return []

        try:
            return [int(uid.strip()) for uid in users_str.split(",") if uid.strip()]
        except ValueError:
            return []

    def _parse_chat_id(self) -> Optional[int]:
        """Parse Telegram chat ID from environment"""
        chat_id_str = os.getenv("TELEGRAM_CHAT_ID", "")
        if not chat_id_str:
            return None

        try:
            return int(chat_id_str)
        except ValueError:
            return None

    @staticmethod
    def _float_env(name: str, default: float, minimum: float = 0.0) -> float:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            return max(minimum, float(raw))
        except ValueError:
            return default

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to runtime-tunable settings."""
        # Fall back to the dataclass defaults so an unset or invalid variable restores them
        claude_defaults, queue_defaults = ClaudeConfig(), QueueConfig()
        sched_defaults, system_defaults = SchedulerConfig(), SystemConfig()

        self.claude.executable = self._find_claude_executable()
        self.claude.workdir = os.getenv("AGENT_WORKDIR", claude_defaults.workdir)
        self.claude.prompts_dir = os.getenv("PROMPTS_DIR", claude_defaults.prompts_dir)
        self.claude.skip_permissions = os.getenv("CLAUDE_SKIP_PERMISSIONS", "true").lower() == "true"

        self.telegram.bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        self.telegram.allowed_users = self._parse_allowed_users()
        self.telegram.notification_chat_id = self._parse_chat_id()

        self.queue.url = (os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "").rstrip("/")
        self.queue.service_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        self.queue.table = os.getenv("JOBS_TABLE", queue_defaults.table)
        self.queue.poll_interval_sec = self._float_env("JOB_POLL_INTERVAL_SEC", queue_defaults.poll_interval_sec, 0.1)
        self.queue.stream_debounce_sec = self._float_env("JOB_STREAM_DEBOUNCE_SEC", queue_defaults.stream_debounce_sec)

        self.scheduler.check_cron = os.getenv("CHECK_CRON", sched_defaults.check_cron)
        self.scheduler.sync_cron = os.getenv("SYNC_CRON", sched_defaults.sync_cron)
        self.scheduler.think_cron = os.getenv("THINK_CRON", sched_defaults.think_cron)
        self.scheduler.think_draft_path = os.getenv("THINK_DRAFT_PATH", sched_defaults.think_draft_path)
        # INGEST_URL points at <dashboard>/api/ingest; the heartbeat lives next to it
        ingest_url = os.getenv("INGEST_URL", "")
        self.scheduler.dashboard_url = ingest_url.replace("/api/ingest", "").rstrip("/")

        self.system.logs_dir = os.getenv("LOGS_DIR", system_defaults.logs_dir)
        self.system.log_level = os.getenv("LOG_LEVEL", system_defaults.log_level).upper()

    def validate(self) -> List[str]:
        """Validate configuration and return any problems"""
        errors = []

        if not self.telegram.bot_token:
            errors.append("TELEGRAM_BOT_TOKEN is not set; interactive bot disabled")

        if self.telegram.bot_token and self.telegram.notification_chat_id is None:
            errors.append("TELEGRAM_CHAT_ID is not set; scheduled reports will not be delivered")

        if not self.queue.enabled:
            errors.append("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set; job queue disabled")

        if not Path(self.claude.prompts_dir).is_dir():
            errors.append(f"Prompts directory not found: {self.claude.prompts_dir}")

        return errors

    def reload_from_env(self) -> None:
        """Reload environment-derived configuration fields at runtime.

        Safe to call during runtime; only adjusts fields that are read on each run.
        """
        self._apply_env_overrides()


# Global config instance
config = Config()
