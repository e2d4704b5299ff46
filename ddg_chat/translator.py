"""Translate OpenAI chat requests into the single-prompt duckchat format."""

import json
from typing import Any, Iterable, List, Tuple

from .openai_models import ChatCompletionsRequest, ChatMessage

DEFAULT_UPSTREAM_MODEL = "gpt-4o-mini"

# Public alias -> upstream model identifier
MODEL_ALIASES = {
    "gpt-4o-mini": "gpt-4o-mini",
    "claude-3-haiku": "claude-3-haiku-20240307",
    "llama-3.3-70b": "meta-llama/Llama-3.3-70B-Instruct-Turbo",
    "mistral-small": "mistralai/Mistral-Small-24B-Instruct-2501",
    "o3-mini": "o3-mini",
}

PUBLIC_MODELS: List[str] = list(MODEL_ALIASES)


def convert_model(alias: str) -> str:
    """Resolve a public model alias (case-insensitive); unknown names get the default model."""
    return MODEL_ALIASES.get((alias or "").lower(), DEFAULT_UPSTREAM_MODEL)


def content_to_text(content: Any) -> str:
    """
    Convert OpenAI message content into plain text.

    A string is returned as-is. A list of content parts yields the concatenation
    of every part's ``text`` field, in order; parts without a string ``text`` are
    skipped. ``None`` is empty and any other value is rendered as JSON text.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                t = item.get("text")
                if isinstance(t, str):
                    parts.append(t)
        return "".join(parts)
    # Fallback for unexpected types
    return json.dumps(content, ensure_ascii=False, default=str)


def prepare_prompt(messages: Iterable[ChatMessage]) -> str:
    """
    Flatten the conversation into one blob of ``<role>:<content>;\\r\\n`` lines.
    The upstream has no system role, so system turns are sent as user turns.
    """
    lines = []
    for m in messages:
        role = "user" if m.role == "system" else m.role
        lines.append(f"{role}:{content_to_text(m.content)};\r\n")
    return "".join(lines)


def translate_request(body: ChatCompletionsRequest) -> Tuple[str, str]:
    """Return (prompt, upstream_model) for an inbound chat request."""
    return prepare_prompt(body.messages), convert_model(body.model or "")
