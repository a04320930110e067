"""HTTP client for the Agent Service harness endpoints."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, AsyncIterator, Literal

import httpx
from pydantic import TypeAdapter

from tandem.config import ClientConfig
from tandem.events import Message, ModeInfo, ModelInfo, RunStatus, ThreadInfo, ThreadState
from tandem.log_utils import log_event

logger = logging.getLogger(__name__)

ToolDecision = Literal["approve", "decline", "always_allow_category"]
PlanAction = Literal["approved", "rejected"]
PermissionPolicy = Literal["allow", "ask", "deny"]

_ERROR_BODY_MAX = 240
_MESSAGES = TypeAdapter(list[Message])
_THREADS = TypeAdapter(list[ThreadInfo])
_MODES = TypeAdapter(list[ModeInfo])
_MODELS = TypeAdapter(list[ModelInfo])


class HarnessRequestError(RuntimeError):
    """A control or query request answered with a non-success status."""

    def __init__(self, method: str, path: str, status_code: int, body: str) -> None:
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body
        super().__init__(f"{method} /harness/{path} failed ({status_code}): {body}")


def _truncate(value: str, limit: int = _ERROR_BODY_MAX) -> str:
    if len(value) <= limit:
        return value
    return f"{value[:limit]}..."


def _compact(body: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in body.items() if value is not None}


class HarnessAPI:
    """Thin JSON wrapper around `{base_url}/harness/*`.

    The httpx client can be injected (tests pass one built on
    `httpx.MockTransport`); otherwise one is created and owned here.
    """

    def __init__(self, config: ClientConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.request_timeout)
        self._base_url = f"{config.base_url.rstrip('/')}/harness"

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HarnessAPI":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path}"

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Accept": "application/json", **self._config.auth_headers()}
        if extra:
            headers.update(extra)
        return headers

    async def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        if response.is_success:
            return
        if not response.is_stream_consumed:
            await response.aread()
        body = _truncate(response.text or response.reason_phrase)
        log_event(
            logger,
            "api.request.failed",
            level=logging.WARNING,
            method=method,
            path=path,
            status=response.status_code,
            body=body,
        )
        raise HarnessRequestError(method, path, response.status_code, body)

    async def post(self, path: str, body: dict[str, Any] | None = None) -> Any:
        response = await self._client.post(
            self._url(path),
            json=_compact(body) if body is not None else None,
            headers=self._headers(),
        )
        await self._raise_for_status(response, "POST", path)
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return None

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        query = {key: str(value) for key, value in _compact(params or {}).items()}
        response = await self._client.get(self._url(path), params=query, headers=self._headers())
        await self._raise_for_status(response, "GET", path)
        return response.json()

    @contextlib.asynccontextmanager
    async def open_event_stream(self) -> AsyncIterator[httpx.Response]:
        """Open `GET events`; the caller checks status and content type."""
        timeout = httpx.Timeout(self._config.request_timeout, read=None)
        async with self._client.stream(
            "GET",
            self._url("events"),
            headers=self._headers({"Accept": "text/event-stream", "Cache-Control": "no-cache"}),
            timeout=timeout,
        ) as response:
            yield response

    # --- control -----------------------------------------------------------

    async def send(self, thread_id: str, content: str, images: list[str] | None = None) -> Any:
        return await self.post("send", {"threadId": thread_id, "content": content, "images": images})

    async def abort(self, thread_id: str) -> Any:
        return await self.post("abort", {"threadId": thread_id})

    async def steer(self, thread_id: str, content: str) -> Any:
        return await self.post("steer", {"threadId": thread_id, "content": content})

    async def follow_up(self, thread_id: str, content: str) -> Any:
        return await self.post("follow-up", {"threadId": thread_id, "content": content})

    async def switch_mode(self, thread_id: str, mode_id: str) -> Any:
        return await self.post("switch-mode", {"threadId": thread_id, "modeId": mode_id})

    async def switch_model(
        self,
        thread_id: str,
        model_id: str,
        scope: str | None = None,
        mode_id: str | None = None,
    ) -> Any:
        return await self.post(
            "switch-model",
            {"threadId": thread_id, "modelId": model_id, "scope": scope, "modeId": mode_id},
        )

    async def tool_approval(self, thread_id: str, decision: ToolDecision) -> Any:
        return await self.post("tool-approval", {"threadId": thread_id, "decision": decision})

    async def answer(self, thread_id: str, question_id: str, answer: str) -> Any:
        return await self.post("answer", {"threadId": thread_id, "questionId": question_id, "answer": answer})

    async def plan_approval(
        self,
        thread_id: str,
        plan_id: str,
        action: PlanAction,
        feedback: str | None = None,
    ) -> Any:
        return await self.post(
            "plan-approval",
            {"threadId": thread_id, "planId": plan_id, "response": _compact({"action": action, "feedback": feedback})},
        )

    async def create_thread(self, title: str | None = None) -> str:
        data = await self.post("thread/create", {"title": title})
        if not isinstance(data, dict) or not isinstance(data.get("threadId"), str):
            raise HarnessRequestError("POST", "thread/create", 200, f"unexpected response: {data!r}")
        return data["threadId"]

    async def rename_thread(self, thread_id: str, title: str) -> Any:
        return await self.post("thread/rename", {"threadId": thread_id, "title": title})

    async def update_permission(
        self,
        thread_id: str | None,
        policy: PermissionPolicy,
        *,
        category: str | None = None,
        tool_name: str | None = None,
    ) -> Any:
        return await self.post(
            "permissions/update",
            {"threadId": thread_id, "category": category, "toolName": tool_name, "policy": policy},
        )

    async def grant(self, thread_id: str | None, *, category: str | None = None, tool_name: str | None = None) -> Any:
        return await self.post("grants", {"threadId": thread_id, "category": category, "toolName": tool_name})

    # --- queries -----------------------------------------------------------

    async def list_threads(self) -> list[ThreadInfo]:
        data = await self.get("thread/list")
        return _THREADS.validate_python((data or {}).get("threads") or [])

    async def thread_messages(self, thread_id: str, limit: int | None = None) -> list[Message]:
        data = await self.get("thread/messages", {"threadId": thread_id, "limit": limit})
        return _MESSAGES.validate_python((data or {}).get("messages") or [])

    async def status(self, thread_id: str) -> RunStatus:
        return RunStatus.model_validate(await self.get("status", {"threadId": thread_id}))

    async def thread_state(self, thread_id: str) -> ThreadState:
        return ThreadState.model_validate(await self.get("state", {"threadId": thread_id}) or {})

    async def modes(self) -> list[ModeInfo]:
        data = await self.get("modes")
        return _MODES.validate_python((data or {}).get("modes") or [])

    async def models(self) -> list[ModelInfo]:
        data = await self.get("models")
        return _MODELS.validate_python((data or {}).get("models") or [])

    async def permissions(self) -> dict[str, Any]:
        return await self.get("permissions") or {}

    async def session(self) -> dict[str, Any]:
        return await self.get("session") or {}
