"""SSEConnection: owns one transport and drives it through the state machine.

All state changes go through ``_dispatch``, which runs synchronously on the
event loop. Side effects live in the per-state entry actions; the only
background work is the task tied to the current state (a connect attempt
or a retry timer) plus the transport's own read loop.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import uuid
from typing import Any, Callable

import httpx
import structlog

from sselink.errors import ConnectionFailed, StreamClosed
from sselink.events import EventEmitter, Handler
from sselink.stream.transport import StreamingTransport, TransportEvent, TransportOptions

from .aggregator import ConnectionContext, Message, merge
from .retry import RetryPolicy
from .state_machine import ConnectionState, Trigger, can_fire, transition

log = structlog.get_logger()


class ConnectionEvent(enum.Enum):
    MESSAGE = "message"
    ERROR = "error"
    CLOSE = "close"
    STATE = "state"


TransportFactory = Callable[[], StreamingTransport]

_Step = tuple[Trigger | None, Any]
_Waiter = tuple[frozenset[ConnectionState], "asyncio.Future[ConnectionState]"]


class SSEConnection:
    """A self-healing event stream with an aggregated message log."""

    def __init__(
        self,
        options: TransportOptions | None = None,
        policy: RetryPolicy | None = None,
        conn_id: str = "",
        http_client: httpx.AsyncClient | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.options = options or TransportOptions()
        self.policy = policy or RetryPolicy()
        self.conn_id = conn_id or uuid.uuid4().hex[:12]
        self._http_client = http_client
        self._transport_factory = transport_factory or self._default_transport

        self.state = ConnectionState.IDLE
        self.context = ConnectionContext()

        self._transport: StreamingTransport | None = None
        self._task: asyncio.Task[None] | None = None
        self._emitter: EventEmitter[ConnectionEvent] = EventEmitter()
        self._waiters: list[_Waiter] = []

    def _default_transport(self) -> StreamingTransport:
        return StreamingTransport(self.options, http_client=self._http_client)

    # -- consumer surface ---------------------------------------------------

    @property
    def retry_count(self) -> int:
        return self.context.retry_count

    @property
    def last_error(self) -> BaseException | None:
        return self.context.last_error

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.context.messages

    def on(self, kind: ConnectionEvent, handler: Handler) -> None:
        self._emitter.on(kind, handler)

    def off(self, kind: ConnectionEvent, handler: Handler | None = None) -> None:
        self._emitter.off(kind, handler)

    async def connect(self) -> None:
        """Start connecting. A no-op while a connection is already underway."""
        if not self._dispatch(Trigger.CONNECT):
            log.debug("connect_ignored", conn_id=self.conn_id, state=self.state.value)

    async def close(self) -> None:
        """Tear down the stream and return to idle. Idempotent."""
        if self.state is ConnectionState.IDLE:
            return
        self._detach()
        self._dispatch(Trigger.CLOSE)
        await self._dispose_transport()
        self._emitter.emit(ConnectionEvent.CLOSE)

    async def reset(self) -> None:
        """Return to idle with a fresh retry budget, keeping the message log."""
        if self.state is not ConnectionState.IDLE:
            self._detach()
            trigger = Trigger.RESET if self.state is ConnectionState.FAILED else Trigger.CLOSE
            self._dispatch(trigger)
            await self._dispose_transport()
        self.context = dataclasses.replace(self.context, retry_count=0, last_error=None)

    async def wait_for(
        self, *states: ConnectionState, timeout: float | None = None
    ) -> ConnectionState:
        """Wait until the machine enters one of ``states``."""
        if self.state in states:
            return self.state
        future: asyncio.Future[ConnectionState] = asyncio.get_running_loop().create_future()
        waiter = (frozenset(states), future)
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conn_id": self.conn_id,
            "url": self.options.url,
            "state": self.state.value,
            "retry_count": self.retry_count,
            "last_error": str(self.last_error) if self.last_error else None,
            "message_count": len(self.messages),
        }

    # -- dispatch -----------------------------------------------------------

    def _dispatch(self, trigger: Trigger, payload: Any = None) -> bool:
        """Fire a trigger, then any follow-up trigger returned by entry actions.

        Returns False when the current state does not accept the trigger.
        """
        next_trigger: Trigger | None = trigger
        while next_trigger is not None:
            if not can_fire(self.state, next_trigger):
                log.debug(
                    "trigger_ignored",
                    conn_id=self.conn_id,
                    state=self.state.value,
                    trigger=next_trigger.value,
                )
                return False

            if next_trigger is Trigger.MESSAGE:
                self._handle_message(payload)
                return True

            self.state = transition(self.state, next_trigger, self.conn_id)
            self._cancel_task()
            self._notify_waiters()
            self._emitter.emit(ConnectionEvent.STATE, self.state)
            next_trigger, payload = self._enter(next_trigger, payload)
        return True

    def _enter(self, trigger: Trigger, payload: Any) -> _Step:
        if self.state is ConnectionState.CONNECTING:
            return self._enter_connecting(trigger)
        if self.state is ConnectionState.OPEN:
            return self._enter_open()
        if self.state is ConnectionState.RETRY:
            return self._enter_retry(trigger, payload)
        if self.state is ConnectionState.DELAYING:
            return self._enter_delaying()
        if self.state is ConnectionState.FAILED:
            return self._enter_failed()
        return None, None

    def _enter_connecting(self, trigger: Trigger) -> _Step:
        stale: StreamingTransport | None = None
        if trigger is Trigger.CONNECT:
            self.context = dataclasses.replace(self.context, retry_count=0)
            stale, self._transport = self._transport, None
        if self._transport is None:
            self._transport = self._transport_factory()
        reconnect = trigger is Trigger.TIMER
        self._task = asyncio.create_task(self._attempt(self._transport, reconnect, stale))
        return None, None

    def _enter_open(self) -> _Step:
        self.context = dataclasses.replace(self.context, retry_count=0, last_error=None)
        self._attach()
        return None, None

    def _enter_retry(self, trigger: Trigger, error: Any) -> _Step:
        self._detach()
        self.context = dataclasses.replace(self.context, last_error=error)
        self._emitter.emit(ConnectionEvent.ERROR, error)
        if trigger is Trigger.DROPPED:
            self._emitter.emit(ConnectionEvent.CLOSE)

        if not self.policy.should_retry(self.context.retry_count):
            return Trigger.EXHAUSTED, None
        self.context = dataclasses.replace(self.context, retry_count=self.context.retry_count + 1)
        return Trigger.SCHEDULE, None

    def _enter_delaying(self) -> _Step:
        delay = self.policy.delay(self.context.retry_count - 1)
        log.info(
            "retry_scheduled",
            conn_id=self.conn_id,
            attempt=self.context.retry_count,
            max_retries=self.policy.max_retries,
            delay=delay,
        )
        self._task = asyncio.create_task(self._wait(delay))
        return None, None

    def _enter_failed(self) -> _Step:
        self._detach()
        log.error(
            "connection_failed",
            conn_id=self.conn_id,
            retries=self.context.retry_count,
            error=str(self.context.last_error),
        )
        return None, None

    # -- state tasks --------------------------------------------------------

    async def _attempt(
        self,
        transport: StreamingTransport,
        reconnect: bool,
        stale: StreamingTransport | None,
    ) -> None:
        if stale is not None:
            await stale.aclose()
        try:
            await transport.connect(is_reconnect=reconnect)
        except ConnectionFailed as exc:
            self._dispatch(Trigger.FAILURE, exc)
            return
        except Exception as exc:
            log.exception("connect_attempt_error", conn_id=self.conn_id)
            self._dispatch(Trigger.FAILURE, exc)
            return
        if transport is not self._transport:
            return
        self._dispatch(Trigger.SUCCESS)

    async def _wait(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._dispatch(Trigger.TIMER)

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _notify_waiters(self) -> None:
        for states, future in list(self._waiters):
            if self.state in states and not future.done():
                future.set_result(self.state)

    # -- transport wiring ---------------------------------------------------

    def _attach(self) -> None:
        if self._transport is None:
            return
        self._transport.on(TransportEvent.MESSAGE, self._on_transport_message)
        self._transport.on(TransportEvent.ERROR, self._on_transport_error)
        self._transport.on(TransportEvent.CLOSE, self._on_transport_close)

    def _detach(self) -> None:
        if self._transport is None:
            return
        self._transport.off(TransportEvent.MESSAGE, self._on_transport_message)
        self._transport.off(TransportEvent.ERROR, self._on_transport_error)
        self._transport.off(TransportEvent.CLOSE, self._on_transport_close)

    async def _dispose_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.aclose()

    def _on_transport_message(self, envelope: dict[str, Any]) -> None:
        self._dispatch(Trigger.MESSAGE, envelope)

    def _on_transport_error(self, error: BaseException) -> None:
        self._dispatch(Trigger.DROPPED, error)

    def _on_transport_close(self) -> None:
        # Normally preceded by an error that already detached us.
        self._dispatch(Trigger.DROPPED, StreamClosed("stream closed"))

    def _handle_message(self, envelope: dict[str, Any]) -> None:
        self.context = merge(self.context, envelope)
        self._emitter.emit(ConnectionEvent.MESSAGE, envelope)
