from __future__ import annotations

import json
from typing import Any

import httpx
from fastapi.testclient import TestClient

from ddg_chat.config import Settings
from ddg_chat.main import create_app

UPSTREAM = "https://duck.test"

LANDING_WITH_TOKEN = '<html><body><script>window.vqd="4-landing";</script></body></html>'
LANDING_WITHOUT_TOKEN = "<html><body>nothing here</body></html>"

SSE_HI = 'data: {"action":"success","message":"Hi"}\n\ndata: [DONE]\n\n'


def sse_body(*records: Any, done: bool = True) -> str:
    """Build an upstream event-stream body from dict records or raw strings."""
    out = []
    for record in records:
        payload = record if isinstance(record, str) else json.dumps(record)
        out.append(f"data: {payload}\n\n")
    if done:
        out.append("data: [DONE]\n\n")
    return "".join(out)


def parse_sse(text: str) -> list[Any]:
    frames = []
    for line in text.splitlines():
        if line.startswith("data: "):
            frames.append(json.loads(line[len("data: "):]))
    return frames


class FakeDuckChat:
    """In-memory stand-in for the duckchat host, served through httpx.MockTransport."""

    def __init__(
        self,
        landing: str = LANDING_WITH_TOKEN,
        assets: dict[str, str] | None = None,
        status_token: str | None = None,
        chat: list[tuple[int, Any]] | None = None,
        token_failures: int = 0,
    ) -> None:
        self.landing = landing
        self.assets = assets or {}
        self.status_token = status_token
        # Each chat call pops the next (status, body); the last one repeats
        self.chat = list(chat or [(200, SSE_HI)])
        self.token_failures = token_failures
        self.landing_hits = 0
        self.requests: list[httpx.Request] = []

    @property
    def chat_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/duckchat/v1/chat"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/":
            self.landing_hits += 1
            if self.landing_hits <= self.token_failures:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, text=self.landing)

        if path == "/duckchat/v1/status":
            if self.status_token and self.landing_hits > self.token_failures:
                return httpx.Response(200, headers={"x-vqd-4": self.status_token})
            return httpx.Response(200)

        if path == "/duckchat/v1/chat":
            status, body = self.chat[0] if len(self.chat) == 1 else self.chat.pop(0)
            if isinstance(body, httpx.AsyncByteStream):
                return httpx.Response(status, stream=body)
            return httpx.Response(status, text=body)

        if path in self.assets:
            return httpx.Response(200, text=self.assets[path])
        return httpx.Response(404, text="not found")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "UPSTREAM_BASE_URL": UPSTREAM,
        "RETRY_DELAY": 0,
        "MAX_RETRY_COUNT": 3,
        "APIKEY": None,
        "VQD_TOKEN": None,
        "PROXY_URL": "",
        "API_PREFIX": "/",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def build_test_client(fake: FakeDuckChat, **overrides: Any) -> TestClient:
    return TestClient(create_app(make_settings(**overrides), transport=fake.transport()))
