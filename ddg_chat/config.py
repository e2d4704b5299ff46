# Configuration for OpenAI-compatible gateway to DuckDuckGo chat

import time
from functools import lru_cache
from typing import Optional

from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import AuthError


class Settings(BaseSettings):
    """
    Settings loaded from environment variables (and a local .env file if present).
    Built once at startup and passed to every component; instances are frozen.
    """
    model_config = SettingsConfigDict(
        case_sensitive=True,
        extra="ignore",
        frozen=True,
        env_file=".env",
    )

    # Gateway
    API_PREFIX: str = Field("/", description="Path prefix for the /v1 routes", alias="API_PREFIX")
    PORT: int = Field(8787, alias="PORT")

    # Gateway auth (optional - if not set, inbound requests are not authenticated)
    APIKEY: Optional[str] = Field(None, description="Shared secret for Authorization: Bearer", alias="APIKEY")

    # Retry policy
    MAX_RETRY_COUNT: int = Field(3, alias="MAX_RETRY_COUNT")
    RETRY_DELAY: int = Field(5000, description="Delay between attempts in milliseconds", alias="RETRY_DELAY")

    # Upstream duckchat
    UPSTREAM_BASE_URL: str = Field("https://duckduckgo.com", alias="UPSTREAM_BASE_URL")
    UPSTREAM_TIMEOUT: float = Field(30, description="Timeout in seconds", alias="UPSTREAM_TIMEOUT")
    PROXY_URL: str = Field("", description="Outbound proxy for upstream calls", alias="PROXY_URL")

    # Optional pre-captured credential, used as a fast path while fresh
    VQD_TOKEN: Optional[str] = Field(None, alias="VQD_TOKEN")
    VQD_HASH: Optional[str] = Field(None, alias="VQD_HASH")
    VQD_TOKEN_MAX_AGE: int = Field(3600, description="Seconds; <= 0 disables expiry", alias="VQD_TOKEN_MAX_AGE")

    # Logging
    LOG_REQUEST_BODY_MAX_LENGTH: int = Field(40000, alias="LOG_REQUEST_BODY_MAX_LENGTH")

    # Moment the settings were loaded; the configured VQD_TOKEN ages from here
    _loaded_at: float = PrivateAttr(default_factory=time.time)

    @property
    def loaded_at(self) -> float:
        return self._loaded_at

    @property
    def api_prefix(self) -> str:
        """Normalized prefix: '' for root, otherwise '/x' without trailing slash."""
        prefix = (self.API_PREFIX or "").strip().rstrip("/")
        if prefix and not prefix.startswith("/"):
            prefix = "/" + prefix
        return prefix

    @property
    def max_attempts(self) -> int:
        return max(1, self.MAX_RETRY_COUNT)

    @property
    def retry_delay_seconds(self) -> float:
        return max(0, self.RETRY_DELAY) / 1000.0

    @property
    def upstream_base_url(self) -> str:
        return self.UPSTREAM_BASE_URL.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def check_gateway_api_key(auth_header: Optional[str], settings: Settings) -> None:
    """
    Validate Authorization: Bearer <key> header against APIKEY.
    No-op when APIKEY is not configured; raises AuthError otherwise.
    """
    if not settings.APIKEY:
        return
    if not auth_header:
        raise AuthError("API key not provided")
    if not auth_header.startswith("Bearer "):
        raise AuthError("Malformed API key, expected 'Bearer <key>'")
    if auth_header[len("Bearer "):] != settings.APIKEY:
        raise AuthError("Invalid API key")
