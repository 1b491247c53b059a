from .claude_bridge import ClaudeBridge, PromptTemplateError
from .queue_store import SupabaseQueueStore, QueueStoreError
from .heartbeat import HeartbeatPinger

__all__ = [
    "ClaudeBridge", "PromptTemplateError",
    "SupabaseQueueStore", "QueueStoreError",
    "HeartbeatPinger"
]
