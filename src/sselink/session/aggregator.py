"""Message aggregation: fold incoming frame envelopes into the message log.

A streaming assistant reply arrives as ``start`` / ``processing`` / ``end``
fragments and is kept as a single log entry that grows in place until it
ends. Everything else is appended whole.
"""

from __future__ import annotations

import dataclasses
import enum
import json
from dataclasses import dataclass
from typing import Any

import structlog

log = structlog.get_logger()


class MessageKind(enum.Enum):
    HUMAN_MESSAGE = "human_message"
    AI_MESSAGE = "ai_message"
    JOURNEY = "journey"


class StreamState(enum.Enum):
    START = "start"
    PROCESSING = "processing"
    END = "end"


@dataclass(frozen=True)
class Message:
    event: MessageKind
    data: Any

    @property
    def is_open_reply(self) -> bool:
        """Whether this is a streaming reply still accepting fragments."""
        return (
            self.event is MessageKind.AI_MESSAGE
            and isinstance(self.data, dict)
            and self.data.get("state") in (StreamState.START.value, StreamState.PROCESSING.value)
        )

    @property
    def content(self) -> Any:
        if isinstance(self.data, dict):
            return self.data.get("content")
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event.value, "data": self.data}


@dataclass(frozen=True)
class ConnectionContext:
    """Mutable-by-replacement state owned by a connection."""

    retry_count: int = 0
    last_error: BaseException | None = None
    messages: tuple[Message, ...] = ()


def _append(context: ConnectionContext, message: Message) -> ConnectionContext:
    return dataclasses.replace(context, messages=context.messages + (message,))


def _replace_last(context: ConnectionContext, message: Message) -> ConnectionContext:
    return dataclasses.replace(context, messages=context.messages[:-1] + (message,))


def _last_open_reply(context: ConnectionContext) -> Message | None:
    if context.messages and context.messages[-1].is_open_reply:
        return context.messages[-1]
    return None


def _merge_ai_message(context: ConnectionContext, payload: Any) -> ConnectionContext:
    if not isinstance(payload, dict):
        log.debug("ai_message_ignored", reason="payload_not_object")
        return context

    state = payload.get("state")
    content = payload.get("content", "")
    open_reply = _last_open_reply(context)

    if state == StreamState.START.value:
        return _append(context, Message(MessageKind.AI_MESSAGE, dict(payload)))

    if state == StreamState.PROCESSING.value:
        if open_reply is None:
            return _append(context, Message(MessageKind.AI_MESSAGE, dict(payload)))
        merged = dict(open_reply.data)
        merged["state"] = StreamState.PROCESSING.value
        merged["content"] = f"{open_reply.content or ''}{content or ''}"
        return _replace_last(context, Message(MessageKind.AI_MESSAGE, merged))

    if state == StreamState.END.value:
        # Content already arrived through the processing fragments.
        if open_reply is None:
            return context
        finished = dict(open_reply.data)
        finished["state"] = StreamState.END.value
        return _replace_last(context, Message(MessageKind.AI_MESSAGE, finished))

    if state is None:
        return _append(context, Message(MessageKind.AI_MESSAGE, dict(payload)))

    log.debug("ai_message_ignored", reason="unknown_state", state=state)
    return context


def _merge_journey(context: ConnectionContext, payload: Any) -> ConnectionContext:
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            log.warning("journey_payload_undecodable", length=len(payload))
            return context
    return _append(context, Message(MessageKind.JOURNEY, payload))


def merge(context: ConnectionContext, envelope: dict[str, Any]) -> ConnectionContext:
    """Return the context with one frame envelope folded into its message log.

    Unknown event tags leave the context unchanged.
    """
    tag = envelope.get("event") if isinstance(envelope, dict) else None
    try:
        kind = MessageKind(tag)
    except ValueError:
        log.debug("message_event_unrecognized", tag=tag)
        return context

    payload = envelope.get("data")

    if kind is MessageKind.AI_MESSAGE:
        return _merge_ai_message(context, payload)
    if kind is MessageKind.JOURNEY:
        return _merge_journey(context, payload)
    return _append(context, Message(kind, payload))
