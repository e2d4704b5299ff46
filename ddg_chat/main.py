"""FastAPI entrypoint for OpenAI-compatible gateway to DuckDuckGo chat"""

from contextlib import asynccontextmanager
import logging
import os
import sys
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .routes_openai import router as openai_router
from .config import Settings, get_settings
from .pipeline import ChatPipeline

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Headers": "*",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info("Starting DuckDuckGo chat gateway")
    logger.info(
        "Inbound API key check: %s", "enabled" if settings.APIKEY else "disabled (APIKEY not set)"
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Upstream=%s prefix=%r max_retry_count=%s retry_delay_ms=%s proxy=%s cached_vqd=%s",
            settings.upstream_base_url,
            settings.api_prefix,
            settings.MAX_RETRY_COUNT,
            settings.RETRY_DELAY,
            "set" if settings.PROXY_URL else "none",
            "set" if settings.VQD_TOKEN else "none",
        )
    yield
    logger.info("Shutting down gateway")


def _redacted_headers(request: Request) -> dict:
    headers = {k.lower(): v for k, v in request.headers.items()}
    if "authorization" in headers:
        token = headers["authorization"] or ""
        parts = token.split()
        headers["authorization"] = (parts[0] + " ****") if len(parts) > 1 else "****"
    if "cookie" in headers:
        headers["cookie"] = "<redacted>"
    return headers


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the gateway. ``transport`` replaces the network for upstream calls (tests)."""
    settings = settings or get_settings()

    app = FastAPI(
        title="DuckDuckGo chat gateway",
        version="0.1.0",
        description="OpenAI-compatible chat completions backed by duckchat",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = ChatPipeline(settings, transport=transport)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=False,
    )

    # Log requests and responses for /v1/chat/completions
    @app.middleware("http")
    async def log_request_response_middleware(request: Request, call_next):
        if request.method != "POST" or not request.url.path.endswith("/v1/chat/completions"):
            return await call_next(request)

        if logger.isEnabledFor(logging.DEBUG):
            body = await request.body()
            # Truncate long bodies
            preview = body.decode("utf-8", errors="replace")
            max_len = settings.LOG_REQUEST_BODY_MAX_LENGTH
            if len(preview) > max_len:
                preview = preview[:max_len] + "...(truncated)"
            logger.debug(
                "Incoming POST %s - headers=%s body=%s",
                request.url.path,
                _redacted_headers(request),
                preview,
            )
        else:
            logger.info("Incoming POST %s", request.url.path)

        response = await call_next(request)
        logger.info(
            "Response for POST %s - status=%s content-type=%s",
            request.url.path,
            response.status_code,
            response.headers.get("content-type"),
        )
        return response

    # Answer every pre-flight with 204; registered last so it runs first
    @app.middleware("http")
    async def preflight_middleware(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)
        return await call_next(request)

    app.include_router(openai_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {"message": "API service is running"}

    @app.get("/ping")
    async def ping():
        return {"message": "pong"}

    return app


app = create_app()


def main():
    """Entry point for the application"""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)


if __name__ == "__main__":
    main()
