"""Task relay: one Claude Code worker shared by chat, cron and a job queue."""

__version__ = "0.1.0"
