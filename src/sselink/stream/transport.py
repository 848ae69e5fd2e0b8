"""Streaming HTTP transport.

Opens the event stream with an httpx streaming request, then drives a
background read loop that decodes bytes, splits frames and emits them
to registered handlers.
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import json
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from sselink.errors import ConnectionFailed, StreamClosed
from sselink.events import EventEmitter, Handler

from .sse_parser import FrameSplitter, parse_frame

log = structlog.get_logger()

DEFAULT_PATH = "/api/v1/sse"


class TransportEvent(enum.Enum):
    MESSAGE = "message"
    ERROR = "error"
    CLOSE = "close"


@dataclass
class TransportOptions:
    """Request settings for the stream."""

    url: str = DEFAULT_PATH
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    cookies: dict[str, str] = field(default_factory=dict)
    connect_timeout: float = 10.0
    read_timeout: float | None = None  # streams are long-lived

    def request_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        headers.update(self.headers)
        return headers

    def request_content(self) -> bytes | None:
        if self.body is None:
            return None
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode()
        return json.dumps(self.body).encode()

    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.read_timeout, connect=self.connect_timeout)


@dataclass
class ConnectResult:
    status_code: int
    reused: bool = False


class StreamingTransport:
    """One cancellable event stream over a POST-capable HTTP request."""

    def __init__(
        self,
        options: TransportOptions | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.options = options or TransportOptions()
        self._owns_client = http_client is None
        self._client = http_client
        self._emitter: EventEmitter[TransportEvent] = EventEmitter()
        self._lock = asyncio.Lock()

        self._response: httpx.Response | None = None
        self._read_task: asyncio.Task[None] | None = None
        # Read loops cancelled by close() that have not finished unwinding yet
        self._closing: list[tuple[asyncio.Task[None], httpx.Response | None]] = []
        self._status_code: int = 0
        # Bumped by close() so requests still in flight are discarded on arrival
        self._generation: int = 0

    @property
    def is_active(self) -> bool:
        """Whether a read loop is currently consuming a stream."""
        return self._read_task is not None and not self._read_task.done()

    def on(self, kind: TransportEvent, handler: Handler) -> None:
        self._emitter.on(kind, handler)

    def off(self, kind: TransportEvent, handler: Handler | None = None) -> None:
        self._emitter.off(kind, handler)

    def listener_count(self, kind: TransportEvent) -> int:
        return self._emitter.handler_count(kind)

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(cookies=self.options.cookies or None)
        return self._client

    async def connect(self, is_reconnect: bool = False) -> ConnectResult:
        """Open the stream.

        Returns as soon as response headers arrive; frames are delivered
        afterwards by the read loop. Raises ConnectionFailed on a non-2xx
        status or a network error.
        """
        async with self._lock:
            await self._settle_closed()
            if not is_reconnect and self.is_active:
                log.debug("transport_connect_reused", url=self.options.url)
                return ConnectResult(status_code=self._status_code, reused=True)

            if is_reconnect:
                await self._cancel_read()

            generation = self._generation
            client = self._http_client()
            request = client.build_request(
                self.options.method,
                self.options.url,
                headers=self.options.request_headers(),
                content=self.options.request_content(),
                timeout=self.options.timeout(),
            )
            if self.options.cookies and not self._owns_client:
                request.headers.setdefault(
                    "cookie",
                    "; ".join(f"{k}={v}" for k, v in self.options.cookies.items()),
                )

            log.debug(
                "transport_connecting",
                url=self.options.url,
                method=self.options.method,
                reconnect=is_reconnect,
            )

            try:
                response = await client.send(request, stream=True)
            except httpx.HTTPError as exc:
                log.warning("transport_connect_error", url=self.options.url, error=str(exc))
                raise ConnectionFailed(f"connection failed: {exc}") from exc

            if generation != self._generation:
                # close() ran while the request was in flight
                await response.aclose()
                raise ConnectionFailed("connection failed: transport closed")

            if not response.is_success:
                await response.aclose()
                log.warning(
                    "transport_connect_rejected",
                    url=self.options.url,
                    status=response.status_code,
                )
                raise ConnectionFailed(
                    f"connection failed: status {response.status_code}",
                    status_code=response.status_code,
                )

            self._response = response
            self._status_code = response.status_code
            self._read_task = asyncio.create_task(self._read_loop(response))
            log.info("transport_open", url=self.options.url, status=response.status_code)
            return ConnectResult(status_code=response.status_code)

    async def _read_loop(self, response: httpx.Response) -> None:
        splitter = FrameSplitter()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        frames = 0
        error: BaseException

        try:
            async for chunk in response.aiter_bytes():
                for block in splitter.feed(decoder.decode(chunk)):
                    frame = parse_frame(block)
                    if frame is None:
                        continue
                    frames += 1
                    self._emitter.emit(TransportEvent.MESSAGE, frame.envelope())
            error = StreamClosed("stream ended by peer")
            log.info("transport_stream_ended", url=self.options.url, frames=frames)
        except asyncio.CancelledError:
            log.debug("transport_read_cancelled", url=self.options.url, frames=frames)
            raise
        except Exception as exc:
            error = exc
            log.warning(
                "transport_stream_error",
                url=self.options.url,
                frames=frames,
                error=repr(exc),
            )
        finally:
            await response.aclose()
            if self._response is response:
                self._response = None

        self._emitter.emit(TransportEvent.ERROR, error)
        self._emitter.emit(TransportEvent.CLOSE)

    async def _settle_closed(self) -> None:
        closing, self._closing = self._closing, []
        if closing:
            await asyncio.wait([task for task, _ in closing])
        for _, response in closing:
            if response is not None:
                await response.aclose()

    async def _cancel_read(self) -> None:
        await self._settle_closed()
        task = self._read_task
        self._read_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        if self._response is not None:
            await self._response.aclose()
            self._response = None

    def close(self) -> None:
        """Stop the stream, emit a final close, and drop every handler.

        Safe to call from any state and more than once.
        """
        self._generation += 1
        task, self._read_task = self._read_task, None
        if task is not None and not task.done():
            task.cancel()
            self._closing.append((task, self._response))
            self._response = None

        dropped = sum(self.listener_count(kind) for kind in TransportEvent)
        self._emitter.emit(TransportEvent.CLOSE)
        self._emitter.clear()
        log.debug("transport_closed", url=self.options.url, handlers_dropped=dropped)

    async def aclose(self) -> None:
        """close(), then wait for the read loop to finish its cleanup."""
        self.close()
        await self._cancel_read()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
