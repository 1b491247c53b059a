"""
Hosted job queue store (Supabase / PostgREST over httpx)
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from taskrelay.core import IQueueStore, TaskRecord, TaskStatus
from taskrelay.config import config

logger = logging.getLogger(__name__)


class QueueStoreError(Exception):
    """Raised when a request against the hosted queue fails."""


# Record field -> column in the hosted table
_COLUMNS = {
    "id": "id",
    "task_kind": "agent_id",
    "status": "status",
    "instruction_text": "prompt",
    "partial_output": "partial_result",
    "final_output": "result",
    "error_text": "error",
    "created_at": "created_at",
    "started_at": "started_at",
    "finished_at": "finished_at",
}
_SELECT = ",".join(_COLUMNS.values())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseQueueStore(IQueueStore):
    """Job queue backed by a table in the hosted Postgres, via its REST API.

    Claims are conditional updates (`status=eq.pending`) so only one claimer
    can move a record to running.
    """

    def __init__(self, url: str, service_key: str, table: str = "agent_jobs",
                 timeout_seconds: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.table = table
        headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_config(cls) -> Optional["SupabaseQueueStore"]:
        """Build a store from configuration, or None when not configured."""
        queue = config.queue
        if not queue.enabled:
            return None
        return cls(queue.url, queue.service_key, table=queue.table, timeout_seconds=queue.request_timeout_sec)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _record_from_row(row: Dict[str, Any]) -> TaskRecord:
        values = {field: row.get(column) for field, column in _COLUMNS.items()}
        values["id"] = str(values["id"])
        values["task_kind"] = str(values["task_kind"] or "")
        values["status"] = TaskStatus(values["status"])
        return TaskRecord(**values)

    async def _request(self, method: str, params: Dict[str, str], payload: Optional[Dict[str, Any]] = None,
                       prefer: Optional[str] = None) -> List[Dict[str, Any]]:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._client.request(method, f"/{self.table}", params=params, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise QueueStoreError(f"queue {method} {self.table} failed: {e}") from e
        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def fetch_oldest_pending(self) -> Optional[TaskRecord]:
        rows = await self._request("GET", {
            "select": _SELECT,
            "status": f"eq.{TaskStatus.PENDING.value}",
            "order": "created_at.asc",
            "limit": "1",
        })
        return self._record_from_row(rows[0]) if rows else None

    async def claim(self, record: TaskRecord) -> Optional[TaskRecord]:
        rows = await self._request(
            "PATCH",
            {
                "id": f"eq.{record.id}",
                "status": f"eq.{TaskStatus.PENDING.value}",
                "select": _SELECT,
            },
            {"status": TaskStatus.RUNNING.value, "started_at": _now()},
            prefer="return=representation",
        )
        return self._record_from_row(rows[0]) if rows else None

    async def update_partial(self, record_id: str, partial_output: str) -> None:
        await self._request(
            "PATCH",
            {"id": f"eq.{record_id}", "status": f"eq.{TaskStatus.RUNNING.value}"},
            {_COLUMNS["partial_output"]: partial_output},
            prefer="return=minimal",
        )

    async def complete(self, record_id: str, final_output: str) -> None:
        await self._finish(record_id, {
            "status": TaskStatus.DONE.value,
            _COLUMNS["final_output"]: final_output,
        })

    async def fail(self, record_id: str, error_text: str) -> None:
        await self._finish(record_id, {
            "status": TaskStatus.ERROR.value,
            _COLUMNS["error_text"]: error_text,
        })

    async def _finish(self, record_id: str, fields: Dict[str, Any]) -> None:
        # Only a running record may become terminal; terminal fields are then frozen
        fields["finished_at"] = _now()
        await self._request(
            "PATCH",
            {"id": f"eq.{record_id}", "status": f"eq.{TaskStatus.RUNNING.value}"},
            fields,
            prefer="return=minimal",
        )
