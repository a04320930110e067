"""Cross-thread routing of events for threads that are not focused.

Only the focused thread has a materialized view. Everything known about the
others is their running flag and the interactive requests they raised,
which pile up here until answered or until the thread gets focus.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from tandem.events import Event
from tandem.state import ActiveThreadInfo, BackgroundNotification, NotificationKind, Session

NOTIFICATION_KINDS: dict[str, NotificationKind] = {
    "ask_question": "ask_question",
    "tool_approval_required": "tool_approval",
    "plan_approval_required": "plan_approval",
}


def mark_running(session: Session, thread_id: str, running: bool) -> Session:
    prev = session.active_threads.get(thread_id)
    if prev is not None and prev.running == running:
        return session
    if prev is None and not running:
        return session
    active = dict(session.active_threads)
    active[thread_id] = replace(prev, running=running) if prev else ActiveThreadInfo(running=running)
    return replace(session, active_threads=active)


def route(session: Session, event: Event) -> tuple[Session, bool]:
    """Apply the session-level effects of `event`.

    Returns the new session and True when the event belongs to a background
    thread, in which case it must not reach the focused view.
    """

    thread_id = event.thread_id
    if thread_id is None:
        return session, False
    if event.type == "agent_start":
        session = mark_running(session, thread_id, True)
    elif event.type == "agent_end":
        session = mark_running(session, thread_id, False)
    if session.is_focused(thread_id):
        return session, False
    kind = NOTIFICATION_KINDS.get(event.type)
    if kind is not None:
        notification = BackgroundNotification(thread_id=thread_id, kind=kind, payload=event)
        session = replace(session, background_notifications=(*session.background_notifications, notification))
    return session, True


def resolve(session: Session, thread_id: str, kind: NotificationKind) -> Session:
    remaining = tuple(
        n for n in session.background_notifications if not (n.thread_id == thread_id and n.kind == kind)
    )
    return replace(session, background_notifications=remaining)


def clear_thread(session: Session, thread_id: str) -> Session:
    remaining = tuple(n for n in session.background_notifications if n.thread_id != thread_id)
    if len(remaining) == len(session.background_notifications):
        return session
    return replace(session, background_notifications=remaining)


def notifications_for(session: Session, thread_id: str) -> list[BackgroundNotification]:
    return [n for n in session.background_notifications if n.thread_id == thread_id]


def describe(notification: BackgroundNotification) -> str:
    """Single-line summary for status displays."""
    payload: Any = notification.payload
    if notification.kind == "ask_question":
        return f"[{notification.thread_id}] question: {getattr(payload, 'question', '')}"
    if notification.kind == "tool_approval":
        return f"[{notification.thread_id}] approve tool: {getattr(payload, 'tool_name', '')}"
    return f"[{notification.thread_id}] approve plan: {getattr(payload, 'title', '') or getattr(payload, 'plan_id', '')}"
