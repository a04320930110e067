from __future__ import annotations

import httpx
import pytest

from tandem.api import HarnessRequestError
from tests.utils import FakeHarness, json_body, make_api, message, status


@pytest.mark.asyncio
async def test_post_compacts_none_and_sends_bearer_token() -> None:
    harness = FakeHarness().on("POST", "switch-model", httpx.Response(204))
    api = make_api(harness, api_token="secret")
    result = await api.switch_model("t1", "big")
    assert result is None
    request = harness.calls("POST", "switch-model")[0]
    assert request.headers["authorization"] == "Bearer secret"
    assert json_body(request) == {"threadId": "t1", "modelId": "big"}


@pytest.mark.asyncio
async def test_plan_approval_nests_response_object() -> None:
    harness = FakeHarness().on("POST", "plan-approval", {"ok": True})
    api = make_api(harness)
    assert await api.plan_approval("t1", "p1", "rejected", "too broad") == {"ok": True}
    assert harness.bodies("plan-approval") == [
        {"threadId": "t1", "planId": "p1", "response": {"action": "rejected", "feedback": "too broad"}}
    ]


@pytest.mark.asyncio
async def test_non_success_raises_request_error() -> None:
    harness = FakeHarness().on("POST", "abort", httpx.Response(409, text="no run"))
    api = make_api(harness)
    with pytest.raises(HarnessRequestError) as excinfo:
        await api.abort("t1")
    assert excinfo.value.status_code == 409
    assert excinfo.value.path == "abort"
    assert "no run" in str(excinfo.value)


@pytest.mark.asyncio
async def test_create_thread_requires_thread_id() -> None:
    harness = FakeHarness().on("POST", "thread/create", [{"threadId": "t7"}, {"nope": 1}])
    api = make_api(harness)
    assert await api.create_thread("New Thread") == "t7"
    with pytest.raises(HarnessRequestError):
        await api.create_thread()
    assert harness.bodies("thread/create") == [{"title": "New Thread"}, {}]


@pytest.mark.asyncio
async def test_queries_parse_typed_models() -> None:
    harness = (
        FakeHarness()
        .on("GET", "thread/list", {"threads": [{"id": "t1", "title": "A", "updatedAt": "2024-05-01T10:00:00Z"}]})
        .on("GET", "thread/messages", {"messages": [message("m1", "hi")]})
        .on("GET", "status", status(True, [{"type": "agent_start"}], question={"questionId": "q", "question": "?"}))
        .on("GET", "state", {"tasks": [{"content": "write", "status": "in_progress", "activeForm": "writing"}]})
        .on("GET", "modes", {"modes": [{"id": "build", "default": True}]})
        .on("GET", "models", {"models": [{"id": "big", "provider": "x"}]})
    )
    api = make_api(harness)
    threads = await api.list_threads()
    assert threads[0].updated_at.year == 2024
    messages = await api.thread_messages("t1", limit=20)
    assert messages[0].text() == "hi"
    assert harness.calls("GET", "thread/messages")[0].url.params["limit"] == "20"
    snapshot = await api.status("t1")
    assert snapshot.running and snapshot.pending.question.question_id == "q"
    state = await api.thread_state("t1")
    assert state.tasks[0].active_form == "writing"
    assert (await api.modes())[0].default is True
    assert (await api.models())[0].id == "big"


@pytest.mark.asyncio
async def test_missing_lists_default_to_empty() -> None:
    harness = FakeHarness().on("GET", "thread/list", {}).on("GET", "thread/messages", {"messages": None})
    api = make_api(harness)
    assert await api.list_threads() == []
    assert await api.thread_messages("t1") == []


@pytest.mark.asyncio
async def test_permission_updates_target_category_or_tool() -> None:
    harness = FakeHarness().on("POST", "permissions/update", {}).on("POST", "grants", {})
    api = make_api(harness)
    await api.update_permission(None, "deny", category="shell")
    await api.grant("t1", tool_name="bash")
    assert harness.bodies("permissions/update") == [{"category": "shell", "policy": "deny"}]
    assert harness.bodies("grants") == [{"threadId": "t1", "toolName": "bash"}]
