from __future__ import annotations

import pytest

from ddg_chat.config import check_gateway_api_key
from ddg_chat.errors import AuthError
from tests.upstream_test_utils import make_settings


@pytest.mark.parametrize(
    ("prefix", "expected"),
    [("/", ""), ("", ""), ("/api", "/api"), ("/api/", "/api"), ("api", "/api")],
)
def test_api_prefix_normalization(prefix: str, expected: str) -> None:
    assert make_settings(API_PREFIX=prefix).api_prefix == expected


def test_retry_settings() -> None:
    settings = make_settings(MAX_RETRY_COUNT=0, RETRY_DELAY=1500)
    assert settings.max_attempts == 1
    assert settings.retry_delay_seconds == 1.5


def test_settings_are_immutable() -> None:
    settings = make_settings()
    with pytest.raises(Exception):
        settings.MAX_RETRY_COUNT = 10


def test_defaults_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAX_RETRY_COUNT", "5")
    monkeypatch.setenv("RETRY_DELAY", "100")
    monkeypatch.delenv("API_PREFIX", raising=False)
    from ddg_chat.config import Settings

    settings = Settings(_env_file=None)
    assert settings.max_attempts == 5
    assert settings.retry_delay_seconds == 0.1
    assert settings.api_prefix == ""


def test_check_gateway_api_key() -> None:
    check_gateway_api_key(None, make_settings())
    settings = make_settings(APIKEY="k")
    check_gateway_api_key("Bearer k", settings)
    for header in (None, "", "k", "Basic k", "Bearer  k", "Bearer x"):
        with pytest.raises(AuthError):
            check_gateway_api_key(header, settings)


def test_loaded_at_is_not_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    import time

    monkeypatch.setenv("loaded_at", "0")
    from ddg_chat.config import Settings

    before = time.time()
    settings = Settings(_env_file=None)
    assert settings.loaded_at >= before
    assert "loaded_at" not in settings.model_dump()
