"""Long-lived event stream with automatic reconnection.

State machine::

    disconnected -> connecting -> open -> (closed | errored)
                 -> reconnecting -> connecting -> ...

The view is never torn down on disconnect; the engine leaves it frozen and
reconciles it from `on_open` once the stream is back.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import httpx

from tandem.api import HarnessAPI
from tandem.config import ClientConfig
from tandem.events import Event, decode_event
from tandem.log_utils import log_event, log_frames_enabled
from tandem.sse import iter_frames

logger = logging.getLogger(__name__)

EVENT_STREAM_CONTENT_TYPE = "text/event-stream"
MIN_RETRY_DELAY_S = 0.1


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"
    RECONNECTING = "reconnecting"


class StreamOpenError(Exception):
    """The events endpoint answered, but not with an event stream."""


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState
    attempt: int = 0
    next_retry_in: float | None = None
    last_error: str | None = None


def backoff_delay(config: ClientConfig, attempt: int, rng: random.Random | None = None) -> float:
    """Exponential backoff (1-indexed attempt) capped at the max delay, with +/- jitter."""
    exp_delay = config.reconnect_base_delay * (2 ** max(0, attempt - 1))
    capped = min(config.reconnect_max_delay, exp_delay)
    spread = capped * config.reconnect_jitter
    jitter = (rng or random).uniform(-spread, spread) if spread else 0.0
    return max(MIN_RETRY_DELAY_S, capped + jitter)


class StreamConnection:
    def __init__(
        self,
        api: HarnessAPI,
        config: ClientConfig,
        *,
        on_open: Callable[[], Awaitable[None]],
        on_event: Callable[[Event], None],
        on_closed: Callable[[], None],
        on_status: Callable[[ConnectionStatus], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api = api
        self._config = config
        self._on_open = on_open
        self._on_event = on_event
        self._on_closed = on_closed
        self._on_status = on_status
        self._sleep = sleep
        self._status = ConnectionStatus(ConnectionState.DISCONNECTED)
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._opened = False

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def state(self) -> ConnectionState:
        return self._status.state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="tandem-event-stream")

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._transition(ConnectionState.DISCONNECTED)

    def _transition(
        self,
        state: ConnectionState,
        *,
        attempt: int = 0,
        next_retry_in: float | None = None,
        last_error: str | None = None,
    ) -> None:
        self._status = ConnectionStatus(state, attempt, next_retry_in, last_error)
        logger.debug("stream state -> %s", state.value)
        if self._on_status is not None:
            try:
                self._on_status(self._status)
            except Exception:
                logger.exception("Connection status listener failed")

    async def _run(self) -> None:
        attempt = 0
        while not self._stopping:
            self._transition(ConnectionState.CONNECTING, attempt=attempt)
            error: str | None = None
            self._opened = False
            try:
                await self._consume()
                self._transition(ConnectionState.CLOSED)
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, StreamOpenError) as exc:
                error = str(exc) or exc.__class__.__name__
            except Exception as exc:
                logger.exception("Event stream failed unexpectedly")
                error = str(exc) or exc.__class__.__name__
            if self._opened:
                attempt = 0
            if error is not None:
                self._transition(ConnectionState.ERRORED, attempt=attempt, last_error=error)
            self._on_closed()
            if self._stopping:
                break
            attempt += 1
            delay = backoff_delay(self._config, attempt)
            log_event(
                logger,
                "stream.reconnect",
                level=logging.WARNING,
                attempt=attempt,
                delay=round(delay, 2),
                error=error,
            )
            self._transition(ConnectionState.RECONNECTING, attempt=attempt, next_retry_in=delay, last_error=error)
            await self._sleep(delay)

    async def _consume(self) -> None:
        """Read one connection until the server closes it."""
        async with self._api.open_event_stream() as response:
            content_type = response.headers.get("content-type", "")
            if not response.is_success or EVENT_STREAM_CONTENT_TYPE not in content_type:
                await response.aread()
                raise StreamOpenError(
                    f"SSE open failed: {response.status_code} {response.reason_phrase} ({content_type or 'no content type'})"
                )
            self._opened = True
            self._transition(ConnectionState.OPEN)
            log_event(logger, "stream.open", url=str(response.url))
            await self._on_open()
            async for frame in iter_frames(response.aiter_lines()):
                if frame.is_heartbeat:
                    continue
                if log_frames_enabled():
                    logger.debug("frame event=%s data=%.200s", frame.event, frame.data)
                event = decode_event(frame.data)
                if event is None:
                    continue
                self._on_event(event)
