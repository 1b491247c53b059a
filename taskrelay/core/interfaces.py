"""
Core interfaces for the task relay
"""
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Union
from dataclasses import dataclass, field
from enum import Enum


class TaskKind:
    """Known task kinds. Kinds are free strings on the wire; unknown ones use defaults."""
    ASSISTANT = "assistant"
    TM_MONITOR = "tm-monitor"
    META_ADS = "meta-ads"
    CAMPAIGN_MONITOR = "campaign-monitor"
    THINK = "think"


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.ERROR)


# Streaming callback: receives each output increment verbatim
ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class TaskRecord:
    """A queued job as stored in the hosted queue table"""
    id: str
    task_kind: str
    status: TaskStatus
    instruction_text: Optional[str] = None
    partial_output: Optional[str] = None
    final_output: Optional[str] = None
    error_text: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


@dataclass
class RunResult:
    """Outcome of one executor invocation"""
    text: str
    success: bool
    error: Optional[str] = None
    return_code: Optional[int] = None
    execution_time: float = 0.0
    # Advisory classification of failures (see core.retry.classify_error)
    error_class: str = ""
    hint: str = ""


@dataclass
class RunContext:
    """Per-invocation state held by the bridge while the executor runs"""
    task_kind: str
    instruction: str
    max_turns: int
    on_chunk: Optional[ChunkCallback] = None
    buffer: List[str] = field(default_factory=list)
    fallback_result: str = ""

    @property
    def text(self) -> str:
        return "".join(self.buffer)


class IClaudeBridge(ABC):
    """Interface for the external task executor"""

    @abstractmethod
    async def run(self, task_kind: str, instruction: str, max_turns: Optional[int] = None,
                  on_chunk: Optional[ChunkCallback] = None, template: Optional[str] = None) -> RunResult:
        """Run one task through the executor, streaming output to on_chunk"""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test if the executor is available"""
        pass


class IQueueStore(ABC):
    """Interface for the hosted job queue"""

    @abstractmethod
    async def fetch_oldest_pending(self) -> Optional[TaskRecord]:
        """Return the oldest pending record, or None"""
        pass

    @abstractmethod
    async def claim(self, record: TaskRecord) -> Optional[TaskRecord]:
        """Atomically move a record pending -> running; None if someone else won"""
        pass

    @abstractmethod
    async def update_partial(self, record_id: str, partial_output: str) -> None:
        """Persist streamed partial output"""
        pass

    @abstractmethod
    async def complete(self, record_id: str, final_output: str) -> None:
        """Mark a record done"""
        pass

    @abstractmethod
    async def fail(self, record_id: str, error_text: str) -> None:
        """Mark a record as errored"""
        pass


class INotifier(ABC):
    """Interface for the owner notification sink"""

    @abstractmethod
    async def notify_owner(self, text: str) -> None:
        """Send a proactive message to the owner"""
        pass


class NullNotifier(INotifier):
    """Notifier used when no messaging platform is configured"""

    async def notify_owner(self, text: str) -> None:
        return None
