"""Rebuilding the focused view from the Agent Service after a gap.

Two entry points share one idea: ask the service for the authoritative run
status of the focused thread and replay its run buffer through the reducer.
`resync_current_thread` runs after the stream reconnects; `switch_thread`
runs when a different thread gains focus and starts from an empty view.

Every fetch here is best-effort. A failing request is logged and the
procedure keeps whatever it could reconstruct. Each procedure also carries
the engine's switch token and stops before writing anything once a later
switch has superseded it.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Iterable

import httpx

from tandem import notifications
from tandem.api import HarnessAPI, HarnessRequestError
from tandem.events import Event, Message, MessageEndEvent, RunStatus, parse_event, tag_thread
from tandem.log_utils import log_context, log_event
from tandem.reducer import clear_transient, replay, reset_run_state
from tandem.state import ThreadView

if TYPE_CHECKING:
    from tandem.engine import SyncEngine

logger = logging.getLogger(__name__)

# ValueError covers undecodable JSON bodies and pydantic validation failures;
# RecursionError covers bodies nested too deeply for the JSON decoder.
FETCH_ERRORS = (HarnessRequestError, httpx.HTTPError, ValueError, RecursionError)


def buffered_events(status: RunStatus, thread_id: str) -> list[Event]:
    """Parse the raw run buffer, dropping unusable entries, attributed to `thread_id`."""
    events: list[Event] = []
    for raw in status.run_buffer:
        event = parse_event(raw)
        if event is not None:
            events.append(tag_thread(event, thread_id))
    return events


def restore_pending(view: ThreadView, status: RunStatus) -> ThreadView:
    return replace(
        view,
        pending_question=status.pending.question,
        pending_tool_approval=status.pending.tool_approval,
        pending_plan_approval=status.pending.plan_approval,
    )


def skip_finalized(events: Iterable[Event], history_ids: set[str]) -> list[Event]:
    """Drop `message_end` snapshots of messages that history already holds complete."""
    return [
        event
        for event in events
        if not (isinstance(event, MessageEndEvent) and event.message.id in history_ids)
    ]


class ResyncController:
    def __init__(self, engine: "SyncEngine", api: HarnessAPI) -> None:
        self._engine = engine
        self._api = api

    def _stale(self, token: int, thread_id: str) -> bool:
        if self._engine.is_current(token, thread_id):
            return False
        log_event(logger, "resync.stale", token=token, current=self._engine.switch_token)
        return True

    async def _fetch_status(self, thread_id: str) -> RunStatus | None:
        try:
            return await self._api.status(thread_id)
        except FETCH_ERRORS as exc:
            log_event(logger, "resync.status_failed", level=logging.WARNING, error=str(exc))
            return None

    async def _fetch_messages(self, thread_id: str) -> list[Message] | None:
        try:
            return await self._api.thread_messages(thread_id)
        except FETCH_ERRORS as exc:
            log_event(logger, "resync.messages_failed", level=logging.WARNING, error=str(exc))
            return None

    async def resync_current_thread(self) -> None:
        """Catch the focused view up after the stream reconnects."""
        thread_id = self._engine.session.current_thread_id
        if thread_id is None:
            return
        token = self._engine.switch_token
        was_streaming = self._engine.view.streaming

        with log_context(thread_id=thread_id):
            status = await self._fetch_status(thread_id)
            if status is None or self._stale(token, thread_id):
                return

            if status.running:
                events = buffered_events(status, thread_id)
                view = replay(reset_run_state(self._engine.view), events)
                # The snapshot's pending slots win over whatever the buffer replay left.
                view = restore_pending(replace(view, status="streaming"), status)
                self._engine.replace_view(view)
                self._engine.update_session(notifications.mark_running(self._engine.session, thread_id, True))
                log_event(logger, "resync.replay", events=len(events))
                return

            if not was_streaming:
                log_event(logger, "resync.idle")
                return

            # The run finished while we were offline: history has the final messages.
            messages = await self._fetch_messages(thread_id)
            if self._stale(token, thread_id):
                return
            view = clear_transient(self._engine.view)
            if messages is not None:
                view = replace(view, messages=tuple(messages))
            self._engine.replace_view(view)
            self._engine.update_session(notifications.mark_running(self._engine.session, thread_id, False))
            log_event(logger, "resync.finished_offline", messages=len(view.messages))

    async def switch_thread(self, thread_id: str) -> bool:
        """Focus `thread_id` and reconstruct its view.

        Returns False when a later switch superseded this one before it
        finished; the later switch owns the view from then on.
        """

        token = self._engine.begin_switch(thread_id)
        with log_context(thread_id=thread_id, switch=token):
            messages = await self._fetch_messages(thread_id)
            if self._stale(token, thread_id):
                return False
            if messages:
                self._engine.replace_view(replace(self._engine.view, messages=tuple(messages)))

            status = await self._fetch_status(thread_id)
            if self._stale(token, thread_id):
                return False
            if status is not None:
                view = self._engine.view
                events = skip_finalized(buffered_events(status, thread_id), view.message_ids())
                view = replay(view, events)
                view = replace(view, status="streaming" if status.running else "idle")
                if not status.running:
                    view = replace(view, current_streaming_message=None)
                view = restore_pending(view, status)
                self._engine.replace_view(view)
                self._engine.update_session(
                    notifications.mark_running(self._engine.session, thread_id, status.running)
                )
                log_event(logger, "switch.replay", running=status.running, events=len(events))

            if not self._engine.view.tasks:
                await self._restore_tasks(token, thread_id)
                if self._stale(token, thread_id):
                    return False

            self._engine.update_session(notifications.clear_thread(self._engine.session, thread_id))
            log_event(logger, "switch.done", messages=len(self._engine.view.messages))
            return True

    async def _restore_tasks(self, token: int, thread_id: str) -> None:
        """Persisted task list for threads whose run buffer is already gone."""
        try:
            state = await self._api.thread_state(thread_id)
        except FETCH_ERRORS as exc:
            log_event(logger, "switch.state_failed", level=logging.WARNING, error=str(exc))
            return
        if state.tasks and not self._stale(token, thread_id):
            self._engine.replace_view(replace(self._engine.view, tasks=tuple(state.tasks)))
