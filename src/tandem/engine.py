"""The single owner of client state.

`SyncEngine` holds the session and the focused thread view, serializes every
change through `dispatch`/`replace_view`/`update_session`, and fans the new
state out to subscribers. Everything runs on one event loop, so a change is
applied and published before the next one starts.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from tandem import notifications, reducer
from tandem.actions import ActionGateway
from tandem.api import HarnessAPI
from tandem.config import ClientConfig
from tandem.events import Event, Message, ThreadInfo
from tandem.log_utils import log_event
from tandem.resync import FETCH_ERRORS, ResyncController
from tandem.state import Session, ThreadView
from tandem.stream import ConnectionStatus, StreamConnection

logger = logging.getLogger(__name__)

Listener = Callable[[Session, ThreadView], None]
StatusListener = Callable[[ConnectionStatus], None]

DEFAULT_THREAD_TITLE = "New Thread"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _recency(thread: ThreadInfo) -> datetime:
    stamp = thread.updated_at or thread.created_at
    if stamp is None:
        return _EPOCH
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=timezone.utc)
    return stamp


class SyncEngine:
    def __init__(self, api: HarnessAPI, config: ClientConfig) -> None:
        self.api = api
        self.config = config
        self._session = Session()
        self._view = reducer.empty_view()
        self._listeners: list[Listener] = []
        self._status_listeners: list[StatusListener] = []
        self._switch_token = 0
        self.resync = ResyncController(self, api)
        self.actions = ActionGateway(self, api)
        self.stream = StreamConnection(
            api,
            config,
            on_open=self._on_stream_open,
            on_event=self.dispatch,
            on_closed=self._on_stream_closed,
            on_status=self._on_stream_status,
        )

    # --- state -------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def view(self) -> ThreadView:
        return self._view

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.stream.status

    def display_messages(self) -> list[Message]:
        return reducer.display_messages(self._view)

    def dispatch(self, event: Event, is_replay: bool = False) -> None:
        """Route `event` across threads, then reduce it into the view if it is focused."""
        session, background = notifications.route(self._session, event)
        view = self._view if background else reducer.apply(self._view, event, is_replay)
        self._commit(session, view)

    def replace_view(self, view: ThreadView) -> None:
        self._commit(self._session, view)

    def update_view(self, **changes: Any) -> None:
        self._commit(self._session, replace(self._view, **changes))

    def update_session(self, session: Session) -> None:
        self._commit(session, self._view)

    def _commit(self, session: Session, view: ThreadView) -> None:
        if session is self._session and view is self._view:
            return
        self._session = session
        self._view = view
        self._notify()

    # --- listeners ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def subscribe_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        session, view = self._session, self._view
        for listener in list(self._listeners):
            try:
                listener(session, view)
            except Exception:
                logger.exception("State listener failed")

    def _on_stream_status(self, status: ConnectionStatus) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Connection status listener failed")

    # --- switching -----------------------------------------------------------

    @property
    def switch_token(self) -> int:
        return self._switch_token

    def begin_switch(self, thread_id: str) -> int:
        """Focus `thread_id` with an empty view and return the new switch token."""
        self._switch_token += 1
        log_event(logger, "switch.begin", thread_id=thread_id, token=self._switch_token)
        self._commit(
            replace(self._session, current_thread_id=thread_id),
            reducer.reset_for_switch(self._view),
        )
        return self._switch_token

    def is_current(self, token: int, thread_id: str) -> bool:
        return token == self._switch_token and self._session.current_thread_id == thread_id

    async def switch_thread(self, thread_id: str) -> bool:
        return await self.resync.switch_thread(thread_id)

    # --- stream --------------------------------------------------------------

    async def _on_stream_open(self) -> None:
        was_connected = self._session.connected
        self._commit(replace(self._session, connected=True), replace(self._view, error=None))
        if not was_connected and self._session.current_thread_id is not None:
            await self.resync.resync_current_thread()

    def _on_stream_closed(self) -> None:
        if self._session.connected:
            self.update_session(replace(self._session, connected=False))

    def start(self) -> None:
        self.stream.start()

    async def stop(self) -> None:
        await self.stream.stop()
        self._on_stream_closed()

    async def aclose(self) -> None:
        await self.stop()
        await self.api.aclose()

    async def __aenter__(self) -> "SyncEngine":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- startup -----------------------------------------------------------

    async def init(self) -> str:
        """Focus the most recently updated thread, creating one if there is none."""
        threads = await self.api.list_threads()
        if threads:
            thread_id = max(threads, key=_recency).id
        else:
            thread_id = await self.api.create_thread(DEFAULT_THREAD_TITLE)
            log_event(logger, "init.thread_created", thread_id=thread_id)
        await self.switch_thread(thread_id)
        await self._adopt_default_mode()
        log_event(logger, "init.done", thread_id=thread_id, threads=len(threads))
        return thread_id

    async def _adopt_default_mode(self) -> None:
        try:
            modes = await self.api.modes()
        except FETCH_ERRORS as exc:
            log_event(logger, "init.modes_failed", level=logging.WARNING, error=str(exc))
            return
        default = next((mode for mode in modes if mode.default), None)
        if default is not None and not self._view.current_mode_id:
            self.update_view(current_mode_id=default.id)
