"""Async HTTP client for the duckchat upstream with browser-like headers and SSE streaming."""

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx

from .config import Settings
from .ddg_models import DuckChatRequest, UpstreamCredential
from .errors import TransportError, UpstreamStatusError

logger = logging.getLogger(__name__)

CHAT_PATH = "/duckchat/v1/chat"
STATUS_PATH = "/duckchat/v1/status"

# The upstream has no public API and rejects traffic that does not look like a browser
FAKE_HEADERS: Dict[str, str] = {
    "Accept": "*/*",
    "Accept-Encoding": "gzip, deflate, br",
    "Accept-Language": "zh-CN,zh;q=0.9",
    "Cookie": "dcm=3; dcs=1",
    "Priority": "u=1, i",
    "Sec-Ch-Ua": '"Chromium";v="134", "Not:A-Brand";v="24", "Google Chrome";v="134"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/134.0.0.0 Safari/537.36",
}

_REDACTED_HEADERS = ("cookie", "x-vqd-hash-1")


def resolve_proxy(proxy_url: str) -> Optional[str]:
    """
    Validate the configured outbound proxy.
    An unusable proxy URL is logged and ignored so requests go out directly.
    """
    if not proxy_url:
        return None
    try:
        parsed = httpx.URL(proxy_url)
    except httpx.InvalidURL as e:
        logger.warning(f"Ignoring invalid PROXY_URL, connecting directly: {e}")
        return None
    if parsed.scheme not in ("http", "https") or not parsed.host:
        logger.warning(f"Ignoring unsupported PROXY_URL {proxy_url!r}, connecting directly")
        return None
    return proxy_url


class DuckChatClient:
    """Client for one inbound request: token scraping GETs and the streamed chat POST."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.upstream_base_url

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.UPSTREAM_TIMEOUT),
            headers={
                **FAKE_HEADERS,
                "Origin": self.base_url,
                "Referer": f"{self.base_url}/",
            },
            proxy=resolve_proxy(settings.PROXY_URL),
            transport=transport,
            follow_redirects=True,
        )

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    async def fetch(self, path: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        """GET a page or asset from the upstream host."""
        url = self.url(path)
        logger.debug("Fetching %s", url)
        try:
            return await self.client.get(url, headers=headers)
        except httpx.RequestError as e:
            raise TransportError(f"Network error fetching {url}: {str(e)}")

    async def probe_status(self) -> httpx.Response:
        """Hit the status endpoint, which hands out a token in the x-vqd-4 response header."""
        return await self.fetch(STATUS_PATH, headers={"x-vqd-accept": "1"})

    @asynccontextmanager
    async def open_chat(
        self, prompt: str, model: str, credential: UpstreamCredential
    ) -> AsyncIterator[AsyncIterator[str]]:
        """
        POST the prompt to the chat endpoint and yield an iterator over the
        response body lines. Non-2xx answers raise UpstreamStatusError before
        anything is yielded.
        """
        url = self.url(CHAT_PATH)
        payload = DuckChatRequest.from_prompt(prompt, model).model_dump()
        request_headers = {
            "Content-Type": "application/json",
            # The upstream always answers with event-stream framing
            "Accept": "text/event-stream",
            "x-vqd-4": credential.token,
        }
        if credential.aux_hash:
            request_headers["x-vqd-hash-1"] = credential.aux_hash

        if logger.isEnabledFor(logging.DEBUG):
            safe_headers = {k: ("****" if k.lower() in _REDACTED_HEADERS else v)
                            for k, v in {**self.client.headers, **request_headers}.items()}
            logger.debug(
                "Sending chat to upstream %s - headers=%s payload=%s",
                url,
                safe_headers,
                json.dumps(payload, ensure_ascii=False)
            )
        else:
            logger.info("Sending chat to upstream - model=%s credential=%s", model, credential.source)

        try:
            async with self.client.stream("POST", url, json=payload, headers=request_headers) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise UpstreamStatusError(
                        f"Upstream returned non-2xx status {response.status_code}: {body}",
                        response.status_code,
                        body,
                    )
                response.encoding = "utf-8"
                yield self._iter_lines(response)
        except httpx.RequestError as e:
            raise TransportError(f"Network error sending chat request: {str(e)}")

    @staticmethod
    async def _iter_lines(response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                yield line
        except httpx.RequestError as e:
            raise TransportError(f"Network error reading upstream stream: {str(e)}")

    async def close(self):
        """Close underlying HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
