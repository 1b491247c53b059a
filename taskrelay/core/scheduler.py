"""
Periodic scheduler - cron-driven self-checks
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from croniter import croniter

from .interfaces import IClaudeBridge, INotifier, TaskKind
from .state import BusyState
from .retry import classify_error
from .task_kinds import default_instruction
from .events import emit_event
from taskrelay.config import config

logger = logging.getLogger(__name__)

TM_CHECK_INSTRUCTION = """\
Check Ticketmaster One for event updates.

Read MEMORY.md first for context on what we're monitoring.

1. Go to one.ticketmaster.com and log in (TM_EMAIL and TM_PASSWORD from the environment)
2. Find the events list or promoter dashboard
3. Extract all events with: name, TM1 number, venue, city, date, status, tickets sold, tickets available, gross
4. Compare to ./session/last-events.json (the previous state)
5. Save the new data to ./session/last-events.json
6. POST all events to the ingest endpoint so the dashboard stays current
7. Report:
   - How many events you found
   - What changed since the last check (new events, ticket count changes, status changes)
   - If nothing changed, say so briefly

Keep the report short and factual."""

META_SYNC_INSTRUCTION = """\
Pull the latest Meta Ads performance data.

Read MEMORY.md first for context on the ad account and client.

1. Find META_ACCESS_TOKEN and META_AD_ACCOUNT_ID in the environment or ../.env.local
2. Get all campaigns: GET /v21.0/{AD_ACCOUNT_ID}/campaigns?fields=id,name,status,objective,daily_budget,lifetime_budget
3. For each ACTIVE campaign get insights (last 30 days):
   GET /v21.0/{campaign_id}/insights?fields=spend,impressions,clicks,reach,cpm,cpc,ctr,purchase_roas&date_preset=last_30d
4. Save raw results to ./session/last-campaigns.json
5. POST to the ingest endpoint with source: "meta"
6. Report:
   - Number of campaigns synced
   - Total spend, average ROAS
   - Any campaign with ROAS < 2.0 (flag it)

roas comes from purchase_roas[0].value; it is a string, convert it to float."""


@dataclass(frozen=True)
class ScheduledCheck:
    """One cron-driven check.

    instruction: fixed instruction for this check; the kind's default when None.
    notify_result: report the run's text (and failures) to the owner.
    draft_path: after the run, deliver (and delete) a message the run drafted.
    """
    name: str
    cron: str
    task_kind: str
    label: str
    notify_result: bool = True
    draft_path: Optional[str] = None
    instruction: Optional[str] = None


def default_checks() -> List[ScheduledCheck]:
    """Checks configured via CHECK_CRON / SYNC_CRON / THINK_CRON; empty disables one."""
    sched = config.scheduler
    checks = [
        ScheduledCheck("tm-check", sched.check_cron, TaskKind.TM_MONITOR, "TM One",
                       instruction=TM_CHECK_INSTRUCTION),
        ScheduledCheck("meta-sync", sched.sync_cron, TaskKind.META_ADS, "Meta Ads",
                       instruction=META_SYNC_INSTRUCTION),
        ScheduledCheck("think", sched.think_cron, TaskKind.THINK, "Proactive",
                       notify_result=False, draft_path=sched.think_draft_path),
    ]
    return [c for c in checks if c.cron.strip()]


class PeriodicScheduler:
    """Fires scheduled checks on their cron expressions.

    A fire is skipped (not queued) while the same check is still running,
    while another check holds the worker, or while a queued job is running.
    """

    def __init__(self, bridge: IClaudeBridge, busy: BusyState, notifier: INotifier,
                 checks: Optional[List[ScheduledCheck]] = None,
                 now: Callable[[], datetime] = datetime.now):
        self.bridge = bridge
        self.busy = busy
        self.notifier = notifier
        self._now = now
        self.checks: Dict[str, ScheduledCheck] = {}
        self._running: Dict[str, bool] = {}
        self._tasks: List[asyncio.Task] = []
        self._fire_tasks: Set[asyncio.Task] = set()

        for check in (checks if checks is not None else default_checks()):
            if not croniter.is_valid(check.cron):
                logger.error(f"[scheduler] Invalid cron for {check.name}: {check.cron!r} - check disabled")
                continue
            self.checks[check.name] = check
            self._running[check.name] = False

    def is_running(self, name: str) -> bool:
        return self._running.get(name, False)

    def next_fire(self, name: str, after: Optional[datetime] = None) -> datetime:
        check = self.checks[name]
        return croniter(check.cron, after or self._now()).get_next(datetime)

    async def start(self) -> None:
        if self._tasks:
            return
        for check in self.checks.values():
            logger.info(f"[scheduler] Scheduled {check.name}: {check.cron}")
            self._tasks.append(asyncio.create_task(self._run_schedule(check)))

    async def stop(self) -> None:
        pending = self._tasks + list(self._fire_tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    async def _run_schedule(self, check: ScheduledCheck) -> None:
        schedule = croniter(check.cron, self._now())
        while True:
            fire_at = schedule.get_next(datetime)
            delay = (fire_at - self._now()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            # Detached so a long run doesn't shift the next computed fire time
            task = asyncio.create_task(self.fire(check.name))
            self._fire_tasks.add(task)
            task.add_done_callback(self._fire_tasks.discard)

    async def fire(self, name: str) -> bool:
        """Run one check now unless the worker is busy. Returns True if it ran."""
        check = self.checks[name]
        if self._running[name]:
            logger.info(f"[scheduler] {name} already running, skipping")
            emit_event("check_skipped", check=name, reason="already_running")
            return False
        if self.busy.check_running:
            logger.info(f"[scheduler] {name} skipped - another check is running")
            emit_event("check_skipped", check=name, reason="check_running")
            return False
        if self.busy.job_running:
            logger.info(f"[scheduler] {name} skipped - a queued job is running")
            emit_event("check_skipped", check=name, reason="job_running")
            return False

        self._running[name] = True
        try:
            with self.busy.claim("check_running"):
                await self._execute(check)
        finally:
            self._running[name] = False
        return True

    async def _execute(self, check: ScheduledCheck) -> None:
        logger.info(f"[scheduler] Running scheduled {check.name}...")
        emit_event("check_started", check=check.name, task_kind=check.task_kind)
        try:
            instruction = check.instruction or default_instruction(check.task_kind)
            result = await self.bridge.run(check.task_kind, instruction)
            emit_event("check_finished", check=check.name, success=result.success)
            if check.notify_result and result.text.strip():
                header = check.label if result.success else f"{check.label} - failed"
                await self.notifier.notify_owner(f"[{header}]\n\n{result.text}")
            if check.draft_path:
                await self._deliver_draft(check)
        except Exception as e:
            logger.error(f"[scheduler] {check.name} failed: {e}")
            if not check.notify_result:
                return
            hint = classify_error(e).hint
            try:
                await self.notifier.notify_owner(f"[{check.label} - failed]\n{e}\n\n{hint}")
            except Exception as notify_error:
                logger.warning(f"[scheduler] Failure notification for {check.name} not sent: {notify_error}")

    async def _deliver_draft(self, check: ScheduledCheck) -> None:
        """Send a drafted proactive message, if the run left one, then remove it."""
        path = Path(check.draft_path)
        if not path.exists():
            return
        draft = path.read_text(encoding="utf-8").strip()
        path.unlink()
        if draft:
            logger.info(f"[scheduler] Sending drafted message from {check.name}")
            await self.notifier.notify_owner(f"[{check.label}]\n\n{draft}")
