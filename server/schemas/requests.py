"""Pydantic request models for FastAPI endpoints."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from models.chat import ChatMessage


class ChatMessageRequest(BaseModel):
    id: Optional[str] = None
    role: str = Field(..., pattern="^(user|assistant|system)$")
    content: str = ""
    parts: list[dict[str, Any]] = Field(default_factory=list)

    def to_chat_message(self) -> ChatMessage:
        return ChatMessage.from_dict(self.model_dump())


class ChatRequest(BaseModel):
    # Empty lists are rejected by the route with 400, not by validation
    messages: list[ChatMessageRequest] = Field(default_factory=list)
    chat_id: Optional[str] = Field(None, min_length=1, max_length=128)
    max_steps: Optional[int] = Field(None, ge=1, le=25)
