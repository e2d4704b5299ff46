import json
import time
import logging
from typing import Union

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse, JSONResponse
from starlette.background import BackgroundTask
from pydantic import ValidationError

from .config import Settings, check_gateway_api_key
from .openai_models import (
    ModelList,
    ModelData,
    ChatCompletionsRequest,
)
from .pipeline import ChatPipeline
from .translator import PUBLIC_MODELS, translate_request
from .errors import (
    AuthError,
    UpstreamError,
    error_response,
    map_auth_error,
    map_generic_error,
    map_upstream_error,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_settings(req: Request) -> Settings:
    return req.app.state.settings


def _get_pipeline(req: Request) -> ChatPipeline:
    return req.app.state.pipeline


async def _parse_body(request: Request) -> Union[ChatCompletionsRequest, JSONResponse]:
    raw = await request.body()
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return error_response(f"Malformed JSON body: {e}", "invalid_request_error", 400)
    if not isinstance(data, dict):
        return error_response("Request body must be a JSON object", "invalid_request_error", 400)
    try:
        return ChatCompletionsRequest.model_validate(data)
    except ValidationError as e:
        logger.warning("Invalid chat completion request: errors=%s", e.errors())
        return error_response(f"Invalid request body: {e}", "invalid_request_error", 400)


@router.get("/v1/models", response_model=ModelList)
async def list_models():
    created = int(time.time())
    return ModelList(
        object="list",
        data=[ModelData(id=alias, created=created) for alias in PUBLIC_MODELS],
    )


@router.post("/v1/chat/completions")
async def chat_completions(request: Request):
    try:
        check_gateway_api_key(request.headers.get("authorization"), _get_settings(request))
    except AuthError as e:
        return map_auth_error(e)

    body = await _parse_body(request)
    if isinstance(body, JSONResponse):
        return body

    prompt, upstream_model = translate_request(body)
    pipeline = _get_pipeline(request)
    logger.debug(
        "Translated %d messages for model %r -> %s (stream=%s)",
        len(body.messages), body.model, upstream_model, bool(body.stream),
    )

    try:
        if body.stream:
            frames = await pipeline.open_stream(prompt, upstream_model)
            headers = {
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
            return StreamingResponse(
                frames,
                media_type="text/event-stream; charset=utf-8",
                headers=headers,
                # Releases the upstream even if the body is never sent
                background=BackgroundTask(frames.aclose),
            )

        # Non-stream path
        return await pipeline.complete(prompt, upstream_model)

    except UpstreamError as e:
        return map_upstream_error(e)
    except Exception as e:
        return map_generic_error(e)
