"""Per-request orchestration: token, upstream chat call and response bridge under retry."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import AsyncExitStack
from typing import AsyncGenerator, Awaitable, Callable, Optional, Tuple

import httpx

from .config import Settings
from .ddg_client import DuckChatClient
from .errors import UpstreamError
from .openai_models import ChatCompletion
from .retry import call_with_retry
from .streaming import collect_completion, openai_stream_from_upstream, sse_error
from .token_provider import CachedCredential, TokenProvider

logger = logging.getLogger(__name__)


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


class UpstreamStream:
    """
    Outbound frames of one streamed completion.

    Owns the upstream response and the per-request client. They are released
    when iteration ends, or by aclose() even if iteration never started.
    """

    def __init__(
        self,
        first: Optional[bytes],
        frames: AsyncGenerator[bytes, None],
        stack: AsyncExitStack,
    ):
        self._frames = frames
        self._stack = stack
        self._released = False
        self._relay = self._iter_frames(first)

    def __aiter__(self) -> UpstreamStream:
        return self

    async def __anext__(self) -> bytes:
        return await self._relay.__anext__()

    async def aclose(self) -> None:
        try:
            await self._relay.aclose()
        finally:
            await self._release()

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            await self._frames.aclose()
        finally:
            await self._stack.aclose()

    async def _iter_frames(self, first: Optional[bytes]) -> AsyncGenerator[bytes, None]:
        # Bytes already sent cannot be retracted, so failures from here on end the stream
        try:
            if first is not None:
                yield first
                async for frame in self._frames:
                    yield frame
        except UpstreamError as e:
            logger.error(f"Stream aborted after partial response: {type(e).__name__}: {e.message}")
            yield sse_error(e.message, e.error_type)
        except asyncio.CancelledError:
            logger.debug("Stream cancelled or client disconnected")
            raise
        finally:
            await self._release()


class ChatPipeline:
    """
    Runs one chat request against the upstream.

    Holds only immutable configuration; every call builds its own HTTP client,
    so concurrent requests share no mutable state.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.transport = transport
        self.sleep = sleep
        self.cached_credential = CachedCredential.from_settings(settings)

    def _client(self) -> DuckChatClient:
        return DuckChatClient(self.settings, transport=self.transport)

    async def _retry(self, operation):
        return await call_with_retry(
            operation,
            attempts=self.settings.max_attempts,
            delay=self.settings.retry_delay_seconds,
            sleep=self.sleep,
        )

    async def complete(self, prompt: str, model: str) -> ChatCompletion:
        """Non-streaming path: the whole answer is read inside each attempt."""
        request_id = new_completion_id()
        async with self._client() as client:
            tokens = TokenProvider(client, self.cached_credential)

            async def attempt(n: int) -> ChatCompletion:
                credential = await tokens.acquire(n)
                async with client.open_chat(prompt, model, credential) as lines:
                    return await collect_completion(model, lines, request_id)

            return await self._retry(attempt)

    async def open_stream(self, prompt: str, model: str) -> UpstreamStream:
        """
        Streaming path. Retries cover everything up to the first outbound
        frame; only then is the response committed to the caller. Raises the
        last UpstreamError when every attempt failed before that point.
        """
        request_id = new_completion_id()
        stack = AsyncExitStack()
        client = await stack.enter_async_context(self._client())
        tokens = TokenProvider(client, self.cached_credential)

        async def attempt(n: int) -> Tuple[Optional[bytes], AsyncGenerator[bytes, None], AsyncExitStack]:
            async with AsyncExitStack() as attempt_stack:
                credential = await tokens.acquire(n)
                lines = await attempt_stack.enter_async_context(
                    client.open_chat(prompt, model, credential)
                )
                frames = openai_stream_from_upstream(model, lines, request_id)
                try:
                    first = await frames.__anext__()
                except StopAsyncIteration:
                    first = None
                # Keep the upstream response open past this attempt
                return first, frames, attempt_stack.pop_all()

        try:
            first, frames, upstream = await self._retry(attempt)
        except BaseException:
            await stack.aclose()
            raise
        stack.push_async_callback(upstream.aclose)
        return UpstreamStream(first, frames, stack)
