"""Pydantic models for the duckchat upstream API."""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel


class DuckChatMessage(BaseModel):
    """Single message of a duckchat request. The upstream only accepts user turns."""
    role: Literal["user"] = "user"
    content: str


class DuckChatRequest(BaseModel):
    """Body of POST /duckchat/v1/chat."""
    model: str
    messages: List[DuckChatMessage]

    @classmethod
    def from_prompt(cls, prompt: str, model: str) -> "DuckChatRequest":
        """Wrap a flattened prompt into the single-message upstream payload."""
        return cls(model=model, messages=[DuckChatMessage(content=prompt)])


class StreamChunk(BaseModel):
    """One decoded `data:` record of the upstream event stream."""
    action: Optional[str] = None
    message: Optional[Any] = None
    model_config = {"extra": "allow"}

    @property
    def text(self) -> str:
        """Text fragment carried by a success record, '' otherwise."""
        if self.action != "success":
            return ""
        if isinstance(self.message, str):
            return self.message
        return ""


class UpstreamCredential(BaseModel):
    """Session token sent as x-vqd-4, plus the optional x-vqd-hash-1 value."""
    token: str
    aux_hash: Optional[str] = None
    source: str = "live"
