"""Event-stream wire parser.

Turns decoded text into frames: ``FrameSplitter`` cuts the text on blank
lines, ``parse_frame`` reads the ``event:``/``data:``/``id:`` fields of one
block.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Frame:
    """One parsed wire unit."""

    data: Any
    event: str | None = None
    id: str | None = None

    def envelope(self) -> dict[str, Any]:
        """The shape handed to message listeners: event name alongside payload."""
        return {"event": self.event, "data": self.data}

    def to_bytes(self) -> bytes:
        """Serialize back to wire format."""
        lines: list[str] = []
        if self.event:
            lines.append(f"event: {self.event}")
        if self.id:
            lines.append(f"id: {self.id}")
        payload = _encode_data(self.data)
        for data_line in payload.split("\n"):
            lines.append(f"data: {data_line}")
        lines.append("")  # blank line terminates the frame
        return ("\n".join(lines) + "\n").encode()


def _encode_data(data: Any) -> str:
    """Wire text for a payload; strings go out raw unless they would read back as JSON."""
    if not isinstance(data, str):
        return json.dumps(data)
    try:
        json.loads(data)
    except ValueError:
        return data
    return json.dumps(data)


def _decode_data(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def parse_frame(block: str) -> Frame | None:
    """Parse one blank-line-terminated block.

    Returns None when the block has no ``data`` field (comments,
    keep-alives, bare ``event:`` lines).
    """
    event: str | None = None
    frame_id: str | None = None
    data_lines: list[str] = []

    for line in block.split("\n"):
        colon = line.find(":")
        if colon <= 0:
            # No field name: comment or garbage
            continue
        field_name = line[:colon].strip()
        value = line[colon + 1:].strip()

        if field_name == "event":
            event = value
        elif field_name == "data":
            data_lines.append(value)
        elif field_name == "id":
            frame_id = value

    if not data_lines:
        return None

    return Frame(data=_decode_data("\n".join(data_lines)), event=event, id=frame_id)


@dataclass
class FrameSplitter:
    """Accumulates decoded text and yields complete blank-line-delimited blocks."""

    _buffer: str = field(default="", repr=False)

    def feed(self, text: str) -> list[str]:
        """Feed a chunk of text, return any complete non-empty blocks."""
        buffer = (self._buffer + text).replace("\r\n", "\n")
        # A trailing CR may be the first half of a CRLF split across reads
        held = ""
        if buffer.endswith("\r"):
            buffer, held = buffer[:-1], "\r"
        buffer = buffer.replace("\r", "\n")
        blocks: list[str] = []

        while "\n\n" in buffer:
            block, buffer = buffer.split("\n\n", 1)
            if block.strip():
                blocks.append(block)

        self._buffer = buffer + held
        return blocks

    @property
    def pending(self) -> str:
        """Text of the incomplete trailing block, if any."""
        return self._buffer
