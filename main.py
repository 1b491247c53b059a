#!/usr/bin/env python3
"""
Main entry point for the task relay
"""
import asyncio
import re
import signal
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from taskrelay.config import config
from taskrelay.orchestrator import AgentOrchestrator

# Configure logging with rotation for file handler
logs_dir = Path(config.system.logs_dir)
logs_dir.mkdir(parents=True, exist_ok=True)
file_handler = RotatingFileHandler(
    logs_dir / "taskrelay.log",
    maxBytes=1_000_000,  # ~1MB
    backupCount=3,
    encoding="utf-8"
)
stream_handler = logging.StreamHandler()
logging.basicConfig(
    level=getattr(logging, config.system.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[stream_handler, file_handler]
)

# python-telegram-bot logs every long-poll request through httpx
logging.getLogger("httpx").setLevel(logging.WARNING)


class _RedactFilter(logging.Filter):
    """Mask credentials that may appear in log lines."""

    def __init__(self) -> None:
        super().__init__(name="redact")
        self._patterns = [
            # Telegram bot token in URL path: /bot<token>/...
            (re.compile(r"/bot[0-9A-Za-z:_-]+"), "/bot<REDACTED>"),
            # Authorization headers
            (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", flags=re.IGNORECASE), r"\1<REDACTED>"),
            (re.compile(r"(TELEGRAM_BOT_TOKEN=)[^\s]+", flags=re.IGNORECASE), r"\1<REDACTED>"),
            (re.compile(r"(SUPABASE_SERVICE_ROLE_KEY=)[^\s]+", flags=re.IGNORECASE), r"\1<REDACTED>"),
            (re.compile(r"(apikey[=:]\s*)[^\s&]+", flags=re.IGNORECASE), r"\1<REDACTED>"),
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        redacted = msg
        for pat, repl in self._patterns:
            redacted = pat.sub(repl, redacted)
        if redacted != msg:
            record.msg = redacted
            record.args = ()
        return True


_rf = _RedactFilter()
file_handler.addFilter(_rf)
stream_handler.addFilter(_rf)

logger = logging.getLogger(__name__)


class OrchestratorCLI:
    """Command-line interface for the orchestrator"""

    def __init__(self):
        self.orchestrator = AgentOrchestrator()
        self.shutdown_event = asyncio.Event()

    async def start(self):
        """Start the orchestrator and wait for a shutdown signal"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler, sig)

        try:
            print("=== Task Relay ===")
            print("Powered by Claude Code CLI")
            print()

            await self.orchestrator.start()
            self._print_status(self.orchestrator.get_status())

            print()
            print("Running. Press Ctrl+C to stop.")
            await self.shutdown_event.wait()
        finally:
            print("\nShutting down...")
            await self.orchestrator.stop()
            print("Shutdown complete.")

    def _signal_handler(self, signum):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, initiating shutdown")
        self.shutdown_event.set()

    @staticmethod
    def _print_status(status):
        """Print formatted status"""
        components = status["components"]
        print("Component Status:")
        print(f"  Claude Code CLI: {'[OK] Available' if components['claude_available'] else '[--] Not available'}")
        print(f"  Job queue      : {'[OK] Configured' if components['queue_configured'] else '[--] Not configured (set SUPABASE_URL)'}")
        print(f"  Telegram Bot   : {'[OK] Configured' if components['telegram_configured'] else '[--] Not configured (set TELEGRAM_BOT_TOKEN)'}")
        print()
        print("Scheduled checks:")
        if not status["checks"]:
            print("  none")
        for name, check in status["checks"].items():
            print(f"  {name:10s} {check['cron']}")
        busy = status["busy"]
        print()
        print(f"Busy: job={busy['job_running']} check={busy['check_running']} interactive={busy['interactive']}")


async def show_status():
    """Show current orchestrator status"""
    orchestrator = AgentOrchestrator()
    try:
        orchestrator.component_status["claude_available"] = orchestrator.claude_bridge.test_connection()
        print("Task Relay Status")
        print("=================")
        print()
        OrchestratorCLI._print_status(orchestrator.get_status())
    finally:
        # The telegram Application is never initialized here; only the httpx clients are open
        await orchestrator.close_clients()


async def run_once(args):
    """Run a single task through the executor and stream it to stdout"""
    from taskrelay.bridges import ClaudeBridge
    from taskrelay.core.task_kinds import resolve_instruction

    if not args:
        print("Usage: python main.py run <kind> [instruction...]")
        sys.exit(1)
    kind = args[0]
    instruction = resolve_instruction(kind, " ".join(args[1:]) or None)

    def echo(chunk: str) -> None:
        sys.stdout.write(chunk)
        sys.stdout.flush()

    result = await ClaudeBridge().run(kind, instruction, on_chunk=echo)
    print()
    print(f"--- {'success' if result.success else 'failed'} ---")
    if not result.success:
        print(result.error or result.text)
        if result.hint:
            print(f"Hint: {result.hint}")
        sys.exit(1)


async def test_telegram_interface():
    """Send a test notification to the owner chat"""
    orchestrator = AgentOrchestrator()
    iface = orchestrator.telegram_interface
    if not iface:
        print("Telegram interface not configured")
        print("Set TELEGRAM_BOT_TOKEN environment variable to enable Telegram")
        await orchestrator.close_clients()
        return
    await iface.app.initialize()
    try:
        await iface.notify_owner("Test notification from the task relay")
        print("Test notification dispatched (check your Telegram)")
    except Exception as e:
        print(f"Failed to send test notification: {e}")
    finally:
        await iface.app.shutdown()
        await orchestrator.close_clients()


def _tail_events(args=None):
    """Print recent NDJSON events"""
    from taskrelay.core.events import read_events

    lines = 20
    args = args or []
    if "--lines" in args:
        try:
            lines = int(args[args.index("--lines") + 1])
        except (IndexError, ValueError):
            print("--lines expects a number")
            return
    events = read_events(lines)
    if not events:
        print("No events found.")
        return
    for ev in events:
        ts = str(ev.pop("timestamp", ""))
        name = ev.pop("event", "")
        details = " ".join(f"{k}={v}" for k, v in ev.items())
        print(f"{ts[:19]} {name:16s} {details}")


def _doctor():
    """Print effective configuration and check CLI availability."""
    from subprocess import run as _run
    from taskrelay.core.task_kinds import kind_table

    print("Effective configuration:")
    print(f"  Log level         : {config.system.log_level}")
    print(f"  Claude executable : {config.claude.executable}")
    print(f"  Working directory : {config.claude.workdir}")
    print(f"  Prompts directory : {config.claude.prompts_dir}")
    print(f"  Skip permissions  : {config.claude.skip_permissions}")
    print(f"  Job queue         : {'enabled' if config.queue.enabled else 'disabled'} (table={config.queue.table}, every {config.queue.poll_interval_sec:g}s)")
    print(f"  CHECK_CRON        : {config.scheduler.check_cron!r}")
    print(f"  SYNC_CRON         : {config.scheduler.sync_cron!r}")
    print(f"  THINK_CRON        : {config.scheduler.think_cron!r}")
    print(f"  Dashboard         : {config.scheduler.dashboard_url or '(heartbeat disabled)'}")

    print("\nTemplates:")
    prompts_dir = Path(config.claude.prompts_dir)
    table = kind_table()
    templates = {table.default.template} | {k.template for k in table.kinds.values()} | {"chat"}
    for name in sorted(templates):
        path = prompts_dir / f"{name}.txt"
        print(f"  {name:10s}: {'ok' if path.exists() else 'MISSING'} ({path})")

    problems = config.validate()
    if problems:
        print("\nProblems:")
        for problem in problems:
            print(f"  - {problem}")

    exe = config.claude.executable
    print(f"\nClaude executable: {exe}")
    try:
        r = _run([exe, "--version"], capture_output=True, text=True, timeout=5)
        print(f"  --version rc={r.returncode} out={r.stdout.strip()[:80]}")
    except Exception as e:
        print(f"  Version check failed: {e}")


def main():
    """Main entry point"""
    if len(sys.argv) > 1:
        command = sys.argv[1]
        if command == "status":
            asyncio.run(show_status())
            return
        if command == "doctor":
            _doctor()
            return
        if command == "run":
            asyncio.run(run_once(sys.argv[2:]))
            return
        if command == "tail-events":
            _tail_events(sys.argv[2:])
            return
        if command == "test-telegram":
            asyncio.run(test_telegram_interface())
            return
        if command == "help":
            print_help()
            return
        print(f"Unknown command: {command}")
        print_help()
        sys.exit(1)
    else:
        # Default: start the orchestrator
        cli = OrchestratorCLI()
        asyncio.run(cli.start())


def print_help():
    """Print help information"""
    print("""Task Relay

Usage:
    python main.py                          Start the bot, scheduler and job poller
    python main.py status                   Show component status
    python main.py doctor                   Print effective config, templates and CLI availability
    python main.py run <kind> [instruction] Run one task now and stream its output
    python main.py tail-events [--lines N]  Show recent NDJSON events
    python main.py test-telegram            Send a test notification (if configured)
    python main.py help                     Show this help

Environment Setup:
    Copy .env.example to .env and configure:
    - CLAUDE_PATH, AGENT_WORKDIR, PROMPTS_DIR
    - TELEGRAM_BOT_TOKEN, TELEGRAM_ALLOWED_USERS, TELEGRAM_CHAT_ID
    - SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY (job queue)
    - CHECK_CRON, SYNC_CRON, THINK_CRON (empty disables a check)
    - INGEST_URL (dashboard heartbeat)
""")


if __name__ == "__main__":
    main()
