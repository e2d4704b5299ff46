import logging
import traceback
from typing import Optional

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Retryable failure talking to the duckchat upstream."""
    error_type = "upstream_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class TokenUnavailable(UpstreamError):
    """No extraction strategy yielded a vqd token."""
    error_type = "token_unavailable"


class TransportError(UpstreamError):
    """Network failure or timeout while reaching the upstream."""
    error_type = "transport_error"


class UpstreamStatusError(UpstreamError):
    """Upstream answered with a non-2xx status."""
    error_type = "upstream_status_error"

    def __init__(self, message: str, status_code: int, body: str = ""):
        self.body = body
        super().__init__(message, status_code)


class StreamDecodeError(Exception):
    """A single event-stream record could not be decoded. Never fatal to the stream."""


class AuthError(Exception):
    """Inbound shared-secret check failed."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


def error_response(message: str, err_type: str, status_code: int, code: Optional[int] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": message,
                "type": err_type,
                "code": code if code is not None else status_code,
            }
        },
    )


def map_auth_error(err: AuthError) -> JSONResponse:
    logger.info(f"Rejected request: {err.message}")
    return error_response(err.message, "authentication_error", 401)


def map_upstream_error(err: UpstreamError) -> JSONResponse:
    """Map the last error of an exhausted retry loop to a 500 response."""
    logger.warning(
        f"Upstream error after retries: {err.message} (status_code={err.status_code})",
        extra={"status_code": err.status_code, "error_type": type(err).__name__}
    )
    return error_response(err.message, err.error_type, 500)


def map_generic_error(err: Exception) -> JSONResponse:
    """Map unexpected exceptions to 500 error with detailed logging."""
    logger.error(
        f"Unexpected error: {type(err).__name__}: {str(err)}",
        exc_info=True,
        extra={
            "error_type": type(err).__name__,
            "error_message": str(err),
            "traceback": traceback.format_exc(),
        }
    )

    # Avoid leaking internal details to client
    return error_response("Internal server error", "internal_error", 500)
