"""
Job queue poller - claims queued jobs from the dashboard and runs them
"""
import asyncio
import logging
import time
from typing import Callable, List, Optional, Set

from .interfaces import IClaudeBridge, IQueueStore, RunResult, TaskRecord
from .state import BusyState
from .retry import classify_error, with_retry
from .task_kinds import resolve_instruction, turns_for_kind
from .events import emit_event
from taskrelay.config import config

logger = logging.getLogger(__name__)


class PartialOutputWriter:
    """Accumulates streamed chunks and persists them at a debounced interval.

    Writes are detached tasks; a failed write is logged and the stream goes on.
    """

    def __init__(self, store: IQueueStore, record_id: str, debounce_seconds: float,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.record_id = record_id
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._chunks: List[str] = []
        self._last_write: Optional[float] = None
        self._pending: Set[asyncio.Task] = set()
        self.writes_started = 0

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def on_chunk(self, chunk: str) -> None:
        self._chunks.append(chunk)
        now = self._clock()
        if self._last_write is not None and now - self._last_write < self.debounce_seconds:
            return
        self._last_write = now
        self.writes_started += 1
        task = asyncio.create_task(self._write(self.text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, text: str) -> None:
        try:
            await self.store.update_partial(self.record_id, text)
        except Exception as e:
            logger.warning(f"event=partial_write_failed job_id={self.record_id} error={e}")

    async def flush(self) -> None:
        """Wait for in-flight partial writes so none lands after the final status."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class JobQueuePoller:
    """Polls the hosted queue and runs the oldest pending job.

    Ticks are fired on a fixed interval; a tick that fires while the previous
    one is still in flight is dropped. The poller is inert when no store is
    configured.
    """

    def __init__(self, store: Optional[IQueueStore], bridge: IClaudeBridge, busy: BusyState,
                 poll_interval: Optional[float] = None, stream_debounce: Optional[float] = None,
                 write_attempts: int = 3, write_base_delay: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.bridge = bridge
        self.busy = busy
        self.poll_interval = poll_interval if poll_interval is not None else config.queue.poll_interval_sec
        self.stream_debounce = stream_debounce if stream_debounce is not None else config.queue.stream_debounce_sec
        self.write_attempts = write_attempts
        self.write_base_delay = write_base_delay
        self._clock = clock
        self._polling = False
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.store is not None

    @property
    def is_polling(self) -> bool:
        return self._polling

    async def start(self) -> None:
        if not self.enabled:
            logger.info("Job queue store not configured - job queue disabled")
            return
        if self._loop_task is not None:
            return
        logger.info(f"Polling for queued jobs every {self.poll_interval:g}s")
        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        await asyncio.gather(self._loop_task, return_exceptions=True)
        self._loop_task = None
        for task in list(self._tick_tasks):
            task.cancel()
        await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)

    async def _run_loop(self) -> None:
        # First tick immediately, then on the interval
        while True:
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self.poll_interval)

    async def tick(self) -> bool:
        """Run one polling cycle. Returns True if a job was claimed and run."""
        if not self.enabled:
            return False
        if self._polling:
            logger.debug("Previous job poll still in flight, skipping tick")
            return False
        self._polling = True
        try:
            return await self._poll_once()
        except Exception as e:
            logger.error(f"Unhandled job poller error: {e}")
            return False
        finally:
            self._polling = False

    async def _poll_once(self) -> bool:
        if self.busy.check_running:
            logger.debug("Periodic check holds the worker, job poll deferred")
            return False

        # Held across the store round-trips too, so a check can't start while we fetch and claim
        with self.busy.claim("job_running"):
            claimed = await self._fetch_and_claim()
            if claimed is None:
                return False
            logger.info(f"event=job_claimed job_id={claimed.id} kind={claimed.task_kind}")
            emit_event("job_claimed", job_id=claimed.id, task_kind=claimed.task_kind)
            await self._run_job(claimed)
        return True

    async def _fetch_and_claim(self) -> Optional[TaskRecord]:
        try:
            record = await self.store.fetch_oldest_pending()
        except Exception as e:
            logger.error(f"Job poll error: {e}")
            return None
        if record is None:
            return None

        try:
            claimed = await self.store.claim(record)
        except Exception as e:
            logger.error(f"Failed to claim job {record.id}: {e}")
            return None
        if claimed is None:
            logger.info(f"Job {record.id} was claimed elsewhere")
        return claimed

    async def _run_job(self, record: TaskRecord) -> RunResult:
        instruction = resolve_instruction(record.task_kind, record.instruction_text)
        writer = PartialOutputWriter(self.store, record.id, self.stream_debounce, clock=self._clock)

        try:
            result = await self.bridge.run(
                record.task_kind,
                instruction,
                max_turns=turns_for_kind(record.task_kind),
                on_chunk=writer.on_chunk,
            )
        except Exception as e:
            classification = classify_error(e)
            result = RunResult(
                text=f"Agent error: {e}",
                success=False,
                error=str(e),
                error_class=classification.category.value,
                hint=classification.hint,
            )
        finally:
            await writer.flush()

        await self._write_status(record, result)
        status = "done" if result.success else "error"
        logger.info(f"event=job_finished job_id={record.id} status={status} error_class={result.error_class or '-'}")
        emit_event("job_finished", job_id=record.id, task_kind=record.task_kind, status=status,
                   error_class=result.error_class or None, duration_s=round(result.execution_time, 2))
        return result

    async def _write_status(self, record: TaskRecord, result: RunResult) -> None:
        """Terminal write; transient store errors are retried, then logged."""
        if result.success:
            async def operation():
                await self.store.complete(record.id, result.text)
        else:
            error_text = result.error or result.text

            async def operation():
                await self.store.fail(record.id, error_text)

        def on_retry(attempt: int, error: BaseException) -> None:
            category = classify_error(error).category.value
            logger.warning(f"event=job_status_retry job_id={record.id} attempt={attempt} class={category}")

        try:
            await with_retry(
                operation,
                max_attempts=self.write_attempts,
                base_delay=self.write_base_delay,
                on_retry=on_retry,
            )
        except Exception as e:
            logger.error(f"event=job_status_write_failed job_id={record.id} error={e}")
