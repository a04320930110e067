from __future__ import annotations

import json
from typing import Any, Callable

import httpx

from tandem.api import HarnessAPI
from tandem.config import ClientConfig

BASE_URL = "http://harness.test"


class FakeHarness:
    """In-process stand-in for the Agent Service, served through `httpx.MockTransport`.

    Routes map `(method, path)` (path relative to `/harness/`) to a dict
    (JSON 200), an `httpx.Response`, a callable taking the request (sync or
    async), or a list of those consumed in order with the last one repeating.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, response: Any) -> "FakeHarness":
        self.routes[(method.upper(), path)] = response
        return self

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        prefix = "/harness/"
        return [
            r for r in self.requests if r.method == method.upper() and r.url.path == f"{prefix}{path}"
        ]

    def bodies(self, path: str) -> list[dict[str, Any]]:
        return [json_body(r) for r in self.calls("POST", path)]

    def __call__(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        path = request.url.path.removeprefix("/harness/")
        route = self.routes.get((request.method, path))
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return httpx.Response(404, text=f"no route for {request.method} {path}")
        if isinstance(route, httpx.Response):
            # Fresh copy: a response object is bound to the request that received it.
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)


def json_body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content or b"{}")


def sse_response(*events: dict[str, Any], heartbeat: bool = True, raw: str = "") -> httpx.Response:
    """An event stream that delivers `events` and then ends."""

    chunks: list[str] = []
    if heartbeat:
        chunks.append("event: heartbeat\ndata: \n\n")
    for event in events:
        chunks.append(f"data: {json.dumps(event)}\n\n")
    chunks.append(raw)
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content="".join(chunks).encode(),
    )


def make_config(**overrides: Any) -> ClientConfig:
    settings: dict[str, Any] = {
        "base_url": BASE_URL,
        "reconnect_base_delay": 1.0,
        "reconnect_max_delay": 8.0,
        "reconnect_jitter": 0.0,
    }
    settings.update(overrides)
    return ClientConfig(**settings)


def make_api(harness: Callable[[httpx.Request], Any], **overrides: Any) -> HarnessAPI:
    config = make_config(**overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(harness))
    return HarnessAPI(config, http_client=client)


def message(msg_id: str, text: str, role: str = "assistant") -> dict[str, Any]:
    return {"id": msg_id, "role": role, "content": [{"type": "text", "text": text}]}


def status(
    running: bool = False,
    run_buffer: list[dict[str, Any]] | None = None,
    **pending: Any,
) -> dict[str, Any]:
    """Body of `GET status`; `pending` takes `question`, `toolApproval`, `planApproval`."""

    return {"running": running, "pending": pending, "runBuffer": run_buffer or []}
