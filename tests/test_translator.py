from __future__ import annotations

import pytest

from ddg_chat.openai_models import ChatCompletionsRequest, ChatMessage
from ddg_chat.translator import (
    DEFAULT_UPSTREAM_MODEL,
    content_to_text,
    convert_model,
    prepare_prompt,
    translate_request,
)


@pytest.mark.parametrize(
    ("alias", "expected"),
    [
        ("claude-3-haiku", "claude-3-haiku-20240307"),
        ("CLAUDE-3-Haiku", "claude-3-haiku-20240307"),
        ("llama-3.3-70b", "meta-llama/Llama-3.3-70B-Instruct-Turbo"),
        ("mistral-small", "mistralai/Mistral-Small-24B-Instruct-2501"),
        ("o3-mini", "o3-mini"),
        ("gpt-4o-mini", "gpt-4o-mini"),
    ],
)
def test_convert_model_known_aliases(alias: str, expected: str) -> None:
    assert convert_model(alias) == expected


@pytest.mark.parametrize("alias", ["gpt-4", "", "unknown-model"])
def test_convert_model_defaults_unknown_aliases(alias: str) -> None:
    assert convert_model(alias) == DEFAULT_UPSTREAM_MODEL


def test_content_to_text_concatenates_text_parts_in_order() -> None:
    content = [
        {"type": "text", "text": "Hello, "},
        {"type": "image_url", "image_url": {"url": "http://x/y.png"}},
        {"type": "text", "text": "world"},
        "stray string",
    ]
    assert content_to_text(content) == "Hello, world"


def test_content_to_text_other_shapes() -> None:
    assert content_to_text("plain") == "plain"
    assert content_to_text(None) == ""
    assert content_to_text(42) == "42"
    assert content_to_text({"a": True}) == '{"a": true}'


def test_prepare_prompt_keeps_order_and_rewrites_system_role() -> None:
    messages = [
        ChatMessage(role="system", content="be brief"),
        ChatMessage(role="user", content=[{"type": "text", "text": "hi"}]),
        ChatMessage(role="assistant", content="hello"),
        ChatMessage(role="user", content="bye"),
    ]
    prompt = prepare_prompt(messages)
    assert prompt == "user:be brief;\r\nuser:hi;\r\nassistant:hello;\r\nuser:bye;\r\n"
    assert prompt.split("\r\n")[:-1] == [
        "user:be brief;",
        "user:hi;",
        "assistant:hello;",
        "user:bye;",
    ]


def test_prepare_prompt_does_not_truncate() -> None:
    long_text = "x" * 250_000
    prompt = prepare_prompt([ChatMessage(role="user", content=long_text)])
    assert prompt == f"user:{long_text};\r\n"


def test_translate_request_empty_messages() -> None:
    body = ChatCompletionsRequest.model_validate({"model": "o3-mini", "messages": []})
    assert translate_request(body) == ("", "o3-mini")


def test_translate_request_missing_model_uses_default() -> None:
    body = ChatCompletionsRequest.model_validate({"messages": [{"role": "user", "content": "hi"}]})
    assert translate_request(body) == ("user:hi;\r\n", DEFAULT_UPSTREAM_MODEL)
