from __future__ import annotations

import asyncio
from dataclasses import replace

import httpx
import pytest

from tandem.engine import SyncEngine
from tandem.events import parse_event
from tandem.stream import ConnectionState
from tests.utils import FakeHarness, make_api, make_config, message, sse_response, status


def ev(kind: str, **fields):
    return parse_event({"type": kind, **fields})


def quiet_harness() -> FakeHarness:
    return (
        FakeHarness()
        .on("GET", "thread/messages", {"messages": []})
        .on("GET", "status", status(False))
        .on("GET", "state", {})
        .on("GET", "modes", {"modes": [{"id": "ask"}, {"id": "build", "default": True}]})
    )


@pytest.mark.asyncio
async def test_init_focuses_most_recently_updated_thread() -> None:
    harness = quiet_harness().on(
        "GET",
        "thread/list",
        {
            "threads": [
                {"id": "old", "updatedAt": "2024-01-01T00:00:00Z"},
                {"id": "new", "updatedAt": "2024-06-01T00:00:00Z"},
                {"id": "undated"},
            ]
        },
    )
    engine = SyncEngine(make_api(harness), make_config())

    assert await engine.init() == "new"

    assert engine.session.current_thread_id == "new"
    assert engine.view.current_mode_id == "build"
    assert harness.calls("POST", "thread/create") == []


@pytest.mark.asyncio
async def test_init_creates_a_thread_when_none_exist() -> None:
    harness = (
        quiet_harness()
        .on("GET", "thread/list", {"threads": []})
        .on("POST", "thread/create", {"threadId": "fresh"})
        .on("GET", "modes", httpx.Response(500))
    )
    engine = SyncEngine(make_api(harness), make_config())

    assert await engine.init() == "fresh"

    assert harness.bodies("thread/create") == [{"title": "New Thread"}]
    assert engine.session.current_thread_id == "fresh"
    assert engine.view.current_mode_id == ""


@pytest.mark.asyncio
async def test_listeners_see_every_change_and_can_unsubscribe() -> None:
    engine = SyncEngine(make_api(FakeHarness()), make_config())
    seen: list[str] = []

    def broken(session, view):
        raise RuntimeError("listener bug")

    engine.subscribe(broken)
    unsubscribe = engine.subscribe(lambda session, view: seen.append(view.status))
    engine.dispatch(ev("agent_start"))
    engine.dispatch(ev("agent_end"))
    unsubscribe()
    engine.dispatch(ev("agent_start"))

    assert seen == ["streaming", "idle"]
    assert engine.view.status == "streaming"


@pytest.mark.asyncio
async def test_no_op_events_do_not_notify() -> None:
    engine = SyncEngine(make_api(FakeHarness()), make_config())
    seen: list[int] = []
    engine.subscribe(lambda session, view: seen.append(1))
    engine.dispatch(ev("workspace_ready"))
    assert seen == []


@pytest.mark.asyncio
async def test_stream_open_resyncs_only_after_a_disconnect() -> None:
    harness = quiet_harness()
    engine = SyncEngine(make_api(harness), make_config())
    engine.update_session(replace(engine.session, current_thread_id="t1"))
    engine.dispatch(ev("error", error="stale"))

    await engine._on_stream_open()
    assert engine.session.connected is True
    assert engine.view.error is None
    assert len(harness.calls("GET", "status")) == 1

    await engine._on_stream_open()
    assert len(harness.calls("GET", "status")) == 1

    engine._on_stream_closed()
    assert engine.session.connected is False
    await engine._on_stream_open()
    assert len(harness.calls("GET", "status")) == 2


@pytest.mark.asyncio
async def test_disconnect_freezes_view_in_place() -> None:
    engine = SyncEngine(make_api(FakeHarness()), make_config())
    engine.update_session(replace(engine.session, current_thread_id="t1", connected=True))
    engine.dispatch(ev("agent_start", threadId="t1"))
    engine.dispatch(ev("message_update", threadId="t1", message=message("m1", "partial")))
    view = engine.view

    engine._on_stream_closed()

    assert engine.session.connected is False
    assert engine.view is view
    assert [m.text() for m in engine.display_messages()] == ["partial"]


@pytest.mark.asyncio
async def test_live_stream_reaches_the_focused_view() -> None:
    harness = quiet_harness().on(
        "GET",
        "events",
        lambda request: sse_response(
            {"type": "agent_start", "threadId": "t1"},
            {"type": "message_end", "threadId": "t1", "message": message("m1", "streamed")},
            {"type": "ask_question", "threadId": "t2", "questionId": "q", "question": "?"},
            {"type": "agent_end", "threadId": "t1"},
        ),
    )
    engine = SyncEngine(make_api(harness), make_config(reconnect_base_delay=0.1, reconnect_max_delay=0.1))
    engine.update_session(replace(engine.session, current_thread_id="t1"))

    engine.start()
    try:
        for _ in range(100):
            if engine.view.messages and engine.session.background_notifications:
                break
            await asyncio.sleep(0.01)
    finally:
        await engine.stop()

    assert [m.text() for m in engine.view.messages] == ["streamed"]
    assert engine.session.background_notifications[0].thread_id == "t2"
    assert engine.session.connected is False
    assert engine.connection_status.state is ConnectionState.DISCONNECTED
