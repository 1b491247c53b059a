"""
Dashboard heartbeat - lets the dashboard show the agent as online
"""
import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class HeartbeatPinger:
    """POSTs <dashboard>/api/agents/heartbeat on a fixed interval. Failures are ignored."""

    def __init__(self, dashboard_url: str, interval_seconds: float = 60.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.dashboard_url = dashboard_url.rstrip("/")
        self.interval_seconds = interval_seconds
        self._client = httpx.AsyncClient(timeout=10.0, transport=transport)
        self._task: Optional[asyncio.Task] = None

    @property
    def endpoint(self) -> str:
        return f"{self.dashboard_url}/api/agents/heartbeat"

    async def ping(self) -> bool:
        try:
            response = await self._client.post(self.endpoint)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            # Network may be down; the dashboard just shows us offline
            logger.debug(f"Heartbeat failed: {e}")
            return False

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self._client.aclose()

    async def _run(self) -> None:
        while True:
            await self.ping()
            await asyncio.sleep(self.interval_seconds)
