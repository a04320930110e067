"""Minimal `text/event-stream` framing over an httpx line iterator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator

HEARTBEAT_EVENT = "heartbeat"
HEARTBEAT_DATA = ":heartbeat"


@dataclass(frozen=True)
class Frame:
    data: str
    event: str = "message"
    id: str | None = None
    retry: int | None = None

    @property
    def is_heartbeat(self) -> bool:
        return self.event == HEARTBEAT_EVENT or not self.data.strip() or self.data.strip() == HEARTBEAT_DATA


class FrameParser:
    """Accumulates lines until a blank line completes a frame.

    Comment lines (leading ':') are dropped; a frame with neither data nor an
    event name produces nothing.
    """

    def __init__(self) -> None:
        self._data: list[str] = []
        self._event = ""
        self._id: str | None = None
        self._retry: int | None = None

    def feed(self, line: str) -> Frame | None:
        line = line.rstrip("\r\n")
        if line == "":
            return self._flush()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            self._id = value
        elif name == "retry" and value.isdigit():
            self._retry = int(value)
        return None

    def _flush(self) -> Frame | None:
        if not self._data and not self._event:
            return None
        frame = Frame(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self._id,
            retry=self._retry,
        )
        self._data = []
        self._event = ""
        self._retry = None
        return frame


async def iter_frames(lines: AsyncIterable[str]) -> AsyncIterator[Frame]:
    parser = FrameParser()
    async for line in lines:
        frame = parser.feed(line)
        if frame is not None:
            yield frame
    # A stream that ends without a trailing blank line still delivers its last frame.
    frame = parser.feed("")
    if frame is not None:
        yield frame
