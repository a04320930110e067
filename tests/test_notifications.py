from __future__ import annotations

from dataclasses import replace

from tandem import notifications
from tandem.engine import SyncEngine
from tandem.events import parse_event
from tandem.state import Session
from tests.utils import FakeHarness, make_api, make_config


def ev(kind: str, **fields):
    return parse_event({"type": kind, **fields})


def focused(thread_id: str = "t1") -> Session:
    return Session(connected=True, current_thread_id=thread_id)


def test_running_flag_tracks_every_tagged_thread() -> None:
    session, handled = notifications.route(focused(), ev("agent_start", threadId="t1"))
    assert handled is False
    assert session.active_threads["t1"].running is True
    session, handled = notifications.route(session, ev("agent_start", threadId="t2"))
    assert handled is True
    session, _ = notifications.route(session, ev("agent_end", threadId="t2"))
    assert session.active_threads["t2"].running is False
    assert session.background_notifications == ()


def test_interactive_background_events_become_notifications() -> None:
    session = focused()
    for event in (
        ev("ask_question", threadId="t2", questionId="q1", question="?"),
        ev("tool_approval_required", threadId="t3", toolCallId="c1", toolName="bash"),
        ev("plan_approval_required", threadId="t3", planId="p1", title="Refactor"),
    ):
        session, handled = notifications.route(session, event)
        assert handled is True
    kinds = [(n.thread_id, n.kind) for n in session.background_notifications]
    assert kinds == [("t2", "ask_question"), ("t3", "tool_approval"), ("t3", "plan_approval")]
    assert "bash" in notifications.describe(session.background_notifications[1])
    assert "Refactor" in notifications.describe(session.background_notifications[2])


def test_untagged_and_focused_events_are_not_background() -> None:
    session = focused()
    assert notifications.route(session, ev("ask_question", questionId="q", question="?")) == (session, False)
    routed, handled = notifications.route(session, ev("ask_question", threadId="t1", questionId="q", question="?"))
    assert handled is False
    assert routed.background_notifications == ()


def test_resolve_and_clear_thread() -> None:
    session = focused()
    for event in (
        ev("ask_question", threadId="t2", questionId="q1", question="?"),
        ev("tool_approval_required", threadId="t2", toolCallId="c1", toolName="bash"),
        ev("ask_question", threadId="t3", questionId="q2", question="?"),
    ):
        session, _ = notifications.route(session, event)
    resolved = notifications.resolve(session, "t2", "ask_question")
    assert [(n.thread_id, n.kind) for n in resolved.background_notifications] == [
        ("t2", "tool_approval"),
        ("t3", "ask_question"),
    ]
    cleared = notifications.clear_thread(session, "t2")
    assert [n.thread_id for n in cleared.background_notifications] == ["t3"]
    assert notifications.clear_thread(cleared, "t9") is cleared
    assert len(notifications.notifications_for(session, "t2")) == 2


def test_mark_running_is_a_no_op_when_unchanged() -> None:
    session = focused()
    assert notifications.mark_running(session, "t5", False) is session
    running = notifications.mark_running(session, "t5", True)
    assert notifications.mark_running(running, "t5", True) is running


def test_background_events_never_touch_the_focused_view() -> None:
    engine = SyncEngine(make_api(FakeHarness()), make_config())
    engine.update_session(replace(engine.session, current_thread_id="t1"))
    engine.dispatch(ev("agent_start", threadId="t1"))
    view = engine.view
    for event in (
        ev("agent_start", threadId="t2"),
        ev("message_end", threadId="t2", message={"id": "x", "role": "assistant"}),
        ev("tool_start", threadId="t2", toolCallId="c", toolName="bash"),
        ev("tool_approval_required", threadId="t2", toolCallId="c", toolName="bash"),
        ev("agent_end", threadId="t2"),
    ):
        engine.dispatch(event)
        assert engine.view is view
    assert engine.session.active_threads["t2"].running is False
    assert [n.kind for n in engine.session.background_notifications] == ["tool_approval"]
