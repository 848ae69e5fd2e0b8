"""Demo remote peer: an aiohttp app that streams a canned voice-assistant session.

Serves ``POST /api/v1/sse`` with a human turn, a streamed assistant reply
and a flight itinerary, which is enough to drive the client end to end.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from aiohttp import web

from .config import ClientConfig
from .stream.sse_parser import Frame
from .stream.transport import DEFAULT_PATH

log = structlog.get_logger()

KEEP_ALIVE = b": keep-alive\n\n"

MOCK_ITINERARY: dict[str, Any] = {
    "flightNumber": "CA1234",
    "destination": "Beijing Capital International Airport",
    "departure": "14:30",
    "gate": "A12",
    "seat": "12A",
    "status": "on-time",
}


def default_script() -> list[Frame]:
    """The canned session streamed to every client."""
    return [
        Frame(event="human_message", data={"text": "When does CA1234 leave?"}),
        Frame(event="ai_message", data={"state": "start", "content": "Flight CA1234 "}),
        Frame(event="ai_message", data={"state": "processing", "content": "departs at 14:30 "}),
        Frame(event="ai_message", data={"state": "processing", "content": "from gate A12."}),
        Frame(event="ai_message", data={"state": "end", "content": ""}),
        # Itinerary travels as a JSON-encoded string inside the JSON payload
        Frame(event="journey", data=json.dumps(MOCK_ITINERARY)),
    ]


async def create_app(
    config: ClientConfig | None = None,
    script: list[Frame] | None = None,
    hold_open: bool = False,
) -> web.Application:
    """Create the peer application.

    Args:
        config: Supplies the pause between frames. Defaults to ClientConfig().
        script: Frames to send on each connection. Defaults to default_script().
        hold_open: Keep streams open with comment heartbeats after the script.
    """
    if config is None:
        config = ClientConfig()

    app = web.Application()
    app["config"] = config
    app["script"] = default_script() if script is None else script
    app["hold_open"] = hold_open
    app["interval"] = config.peer_interval
    app["requests"] = []

    app.router.add_post(DEFAULT_PATH, handle_stream)
    app.router.add_get("/health", handle_health)

    return app


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "connections": len(request.app["requests"])})


async def handle_stream(request: web.Request) -> web.StreamResponse:
    """POST /api/v1/sse: stream the script, then optionally keep alive."""
    app = request.app
    body = await request.read()
    app["requests"].append({"headers": dict(request.headers), "body": body})
    conn_no = len(app["requests"])
    log.info("peer_stream_opened", connection=conn_no, body_bytes=len(body))

    response = web.StreamResponse(
        status=200,
        headers={
            "content-type": "text/event-stream",
            "cache-control": "no-cache",
        },
    )
    await response.prepare(request)

    interval: float = app["interval"]
    try:
        for frame in app["script"]:
            await response.write(frame.to_bytes())
            await asyncio.sleep(interval)
        while app["hold_open"]:
            await response.write(KEEP_ALIVE)
            await asyncio.sleep(interval)
    except ConnectionResetError:
        log.info("peer_client_gone", connection=conn_no)
        return response

    await response.write_eof()
    log.info("peer_stream_closed", connection=conn_no)
    return response


def run_server(config: ClientConfig | None = None, hold_open: bool = True) -> None:
    """Run the demo peer (blocking)."""
    if config is None:
        config = ClientConfig()

    async def _run() -> None:
        app = await create_app(config, hold_open=hold_open)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host=config.peer_host, port=config.peer_port)
        await site.start()
        log.info("peer_listening", host=config.peer_host, port=config.peer_port)

        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    asyncio.run(_run())
