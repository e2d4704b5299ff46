"""Utilities to transform duckchat SSE into OpenAI-compatible chat completions."""

import json
import logging
import time
from typing import AsyncGenerator, AsyncIterable, Dict, Any, Optional

from pydantic import ValidationError

from .ddg_models import StreamChunk
from .errors import StreamDecodeError
from .openai_models import (
    ChatChoice,
    ChatCompletion,
    ChatCompletionChunk,
    ChatCompletionChunkChoice,
    ChatMessageResponse,
    DeltaMessage,
    Usage,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"


def decode_record(payload: str) -> StreamChunk:
    """Decode the JSON payload of one `data:` record."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise StreamDecodeError(f"invalid JSON in stream record: {e}")
    if not isinstance(data, dict):
        raise StreamDecodeError(f"stream record is not an object: {payload[:100]}")
    try:
        return StreamChunk(**data)
    except ValidationError as e:
        raise StreamDecodeError(f"unexpected stream record shape: {e}")


async def iter_upstream_updates(
    lines: AsyncIterable[str],
) -> AsyncGenerator[Dict[str, Any], None]:
    """
    Parse upstream SSE lines.
    Yields dicts: {"text": <fragment>, "finished": False} for every success
    record with text, then {"text": "", "finished": True} on the [DONE] marker.
    Ends silently when the body ends without a marker.
    """
    async for line in lines:
        if not line.startswith(DATA_PREFIX):
            continue

        data_str = line[len(DATA_PREFIX):].strip()
        if data_str == DONE_MARKER:
            yield {"text": "", "finished": True}
            return

        try:
            chunk = decode_record(data_str)
        except StreamDecodeError as e:
            logger.warning(f"Skipping upstream record: {e}")
            continue

        # Progress/control records carry other actions
        if chunk.action != "success":
            continue

        if chunk.text:
            yield {"text": chunk.text, "finished": False}


def _chunk_payload(
    chunk_id: str,
    model: str,
    created: int,
    delta_content: Optional[str] = None,
    finish_reason: Optional[str] = None,
) -> Dict[str, Any]:
    chunk = ChatCompletionChunk(
        id=chunk_id,
        created=created,
        model=model,
        choices=[
            ChatCompletionChunkChoice(
                index=0,
                delta=DeltaMessage(content=delta_content),
                finish_reason=finish_reason,
            )
        ],
    )
    payload = chunk.model_dump()
    # Unset delta fields are left out; the stop chunk carries an empty delta
    payload["choices"][0]["delta"] = chunk.choices[0].delta.model_dump(exclude_none=True)
    return payload


def _sse_encode(obj: Dict[str, Any]) -> bytes:
    return f"data: {json.dumps(obj, ensure_ascii=False)}\n\n".encode("utf-8")


def sse_error(message: str, err_type: str = "upstream_error", code: int = 502) -> bytes:
    """Error frame for failures after part of a stream was already sent."""
    return _sse_encode({"error": {"message": message, "type": err_type, "code": code}})


async def openai_stream_from_upstream(
    model: str,
    lines: AsyncIterable[str],
    request_id: str,
) -> AsyncGenerator[bytes, None]:
    """
    Bridge the upstream event stream into OpenAI chat.completion.chunk frames.

    Every text fragment becomes one content delta, yielded as soon as it is
    decoded. The [DONE] marker becomes a final chunk with an empty delta and
    finish_reason="stop". A body that ends without the marker ends the
    stream without that chunk.
    """
    created = int(time.time())
    async for update in iter_upstream_updates(lines):
        if update["finished"]:
            yield _sse_encode(
                _chunk_payload(
                    chunk_id=request_id,
                    model=model,
                    created=created,
                    finish_reason="stop",
                )
            )
            return

        yield _sse_encode(
            _chunk_payload(
                chunk_id=request_id,
                model=model,
                created=created,
                delta_content=update["text"],
            )
        )


async def collect_completion(
    model: str,
    lines: AsyncIterable[str],
    request_id: str,
) -> ChatCompletion:
    """Aggregate the whole upstream answer into a single chat.completion object."""
    parts = []
    async for update in iter_upstream_updates(lines):
        if update["finished"]:
            break
        parts.append(update["text"])

    return ChatCompletion(
        id=request_id,
        created=int(time.time()),
        model=model,
        choices=[
            ChatChoice(
                index=0,
                message=ChatMessageResponse(content="".join(parts)),
                finish_reason="stop",
            )
        ],
        # Token usage is not computed by the gateway
        usage=Usage(prompt_tokens=0, completion_tokens=0, total_tokens=0),
    )
