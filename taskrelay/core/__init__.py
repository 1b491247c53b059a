from .interfaces import (
    TaskKind, TaskStatus, TaskRecord, RunResult, RunContext, ChunkCallback,
    IClaudeBridge, IQueueStore, INotifier, NullNotifier
)
from .state import BusyState

__all__ = [
    "TaskKind", "TaskStatus", "TaskRecord", "RunResult", "RunContext", "ChunkCallback",
    "IClaudeBridge", "IQueueStore", "INotifier", "NullNotifier",
    "BusyState"
]
