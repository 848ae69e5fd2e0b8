"""Tests for the command line client loop."""

import pytest
from aiohttp import web

from sselink.__main__ import _run_client
from sselink.config import ClientConfig
from sselink.server import create_app


class TestRunClient:
    @pytest.mark.asyncio
    async def test_prints_messages_until_failed(self, aiohttp_server, capsys):
        server = await aiohttp_server(await create_app(ClientConfig(peer_interval=0)))
        config = ClientConfig(url=str(server.make_url("/api/v1/sse")), max_retries=0)

        failed = await _run_client(config)

        out = capsys.readouterr().out
        assert failed
        assert '"event": "human_message"' in out
        assert '"messages"' in out
        assert "Flight CA1234 departs at 14:30 from gate A12." in out

    @pytest.mark.asyncio
    async def test_rejected_connection_fails(self, aiohttp_server, capsys):
        async def reject(request):
            return web.Response(status=503)

        app = web.Application()
        app.router.add_post("/api/v1/sse", reject)
        server = await aiohttp_server(app)
        config = ClientConfig(url=str(server.make_url("/api/v1/sse")), max_retries=1, base_delay=0.01)

        assert await _run_client(config)
        assert '"messages": []' in capsys.readouterr().out
