#!/usr/bin/env python3
"""
Tests for the dashboard heartbeat
"""
import httpx
import pytest

from taskrelay.bridges.heartbeat import HeartbeatPinger


@pytest.mark.asyncio
async def test_ping_posts_to_heartbeat_endpoint():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    pinger = HeartbeatPinger("https://dash.example.com/", transport=httpx.MockTransport(handler))
    assert await pinger.ping() is True
    await pinger.stop()

    assert seen[0].method == "POST"
    assert str(seen[0].url) == "https://dash.example.com/api/agents/heartbeat"


@pytest.mark.asyncio
async def test_ping_failure_is_ignored():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    pinger = HeartbeatPinger("https://dash.example.com", transport=httpx.MockTransport(handler))
    assert await pinger.ping() is False
    await pinger.stop()
